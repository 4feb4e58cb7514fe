from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from tablet_loans.core.security import decode_access_token
from tablet_loans.core.logging import get_logger, current_admin_id_ctx
from tablet_loans.db.session import get_db
from tablet_loans.db.models import Admin
from tablet_loans.services.auth import get_admin_by_id, is_token_blacklisted

logger = get_logger("api.dependencies")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_current_admin(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Admin:
    """Decode JWT, check blacklist, and return the current admin."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    claims = decode_access_token(token)
    if claims is None:
        raise credentials_exception

    if await is_token_blacklisted(db, claims["jti"]):
        logger.warning(f"Revoked token used: jti={claims['jti']}")
        raise credentials_exception

    admin = await get_admin_by_id(db, claims["sub"])
    if admin is None:
        raise credentials_exception

    current_admin_id_ctx.set(admin.id)

    return admin
