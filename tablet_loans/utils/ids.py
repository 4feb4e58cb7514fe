from uuid import UUID


def is_valid_id(value: str | None) -> bool:
    """True if ``value`` is a well-formed UUID string, the primary key format of every table."""
    if not value:
        return False
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True
