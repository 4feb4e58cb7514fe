from fastapi import HTTPException, status

from tablet_loans.core.exceptions import ConflictError, LedgerError, NotFoundError


def ledger_http_error(e: LedgerError) -> HTTPException:
    """Translate a ledger error into the matching HTTP response.

    Conflicts carry their reason code so clients can tell a device that is
    out of service from one that is simply on loan.
    """
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"reason": e.reason.value, "message": str(e)},
        )
    # ValidationFailure
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
