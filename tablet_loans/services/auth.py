from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from tablet_loans.core.logging import get_logger
from tablet_loans.core.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    token_expiry,
    verify_password,
)
from tablet_loans.db.models import Admin, BlacklistedToken
from tablet_loans.utils.ids import is_valid_id

logger = get_logger("services.auth")


async def get_admin_by_id(db: AsyncSession, admin_id: str) -> Optional[Admin]:
    if not is_valid_id(admin_id):
        return None
    result = await db.execute(select(Admin).where(Admin.id == admin_id))
    return result.scalar_one_or_none()


async def ensure_built_in_admin(db: AsyncSession, username: str, password: str) -> Admin:
    """Create the built-in admin account if it doesn't exist."""
    result = await db.execute(select(Admin).where(Admin.username == username))
    admin = result.scalar_one_or_none()
    if admin:
        logger.info(f"Built-in admin already exists: {username}")
        return admin

    admin = Admin(
        username=username,
        hashed_password=hash_password(password),
        is_built_in=True,
    )
    db.add(admin)
    await db.flush()
    await db.refresh(admin)

    logger.info(f"Built-in admin created: {username}")
    return admin


async def authenticate_admin(
    db: AsyncSession, username: str, password: str
) -> Optional[Admin]:
    """Authenticate an admin and return the account if valid."""
    result = await db.execute(select(Admin).where(Admin.username == username))
    admin = result.scalar_one_or_none()

    if not admin:
        logger.warning(f"Login failed: unknown username {username}")
        return None

    if not verify_password(password, admin.hashed_password):
        logger.warning(f"Login failed: wrong password for {username}")
        return None

    logger.info(f"Login successful: {username} (id={admin.id})")
    return admin


def create_admin_token(admin: Admin) -> str:
    """Create a JWT token for an admin."""
    return create_access_token(admin.id)


async def change_password(
    db: AsyncSession, admin: Admin, current_password: str, new_password: str
) -> Admin:
    """Replace an admin's password after checking the current one."""
    if not verify_password(current_password, admin.hashed_password):
        logger.warning(f"Password change rejected: wrong current password for id={admin.id}")
        raise ValueError("Current password is incorrect")
    if current_password == new_password:
        raise ValueError("New password must differ from the current password")

    admin.hashed_password = hash_password(new_password)
    await db.flush()
    await db.refresh(admin)

    logger.info(f"Password changed: admin id={admin.id}")
    return admin


async def blacklist_token(
    db: AsyncSession, token: str
) -> None:
    """Revoke ``token`` until it would have expired anyway."""
    claims = decode_access_token(token)
    if not claims:
        return

    jti = claims["jti"]
    if await is_token_blacklisted(db, jti):
        return

    entry = BlacklistedToken(jti=jti, expires_at=token_expiry(claims))
    db.add(entry)
    await db.flush()

    logger.info(f"Token blacklisted: jti={jti}")


async def is_token_blacklisted(db: AsyncSession, jti: str) -> bool:
    """Check if a token JTI is in the blacklist."""
    result = await db.execute(
        select(BlacklistedToken).where(BlacklistedToken.jti == jti)
    )
    return result.scalar_one_or_none() is not None


async def cleanup_expired_tokens(db: AsyncSession) -> int:
    """Remove expired tokens from the blacklist. Returns count deleted."""
    now = datetime.now(timezone.utc)
    result = await db.execute(
        delete(BlacklistedToken).where(BlacklistedToken.expires_at < now)
    )
    count = result.rowcount
    await db.commit()
    if count:
        logger.info(f"Cleaned up {count} expired blacklisted tokens")
    return count
