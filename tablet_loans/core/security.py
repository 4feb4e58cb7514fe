"""
Password hashing and admin access tokens.

Tokens are HS256 JWTs scoped to the admin API. Every token carries a ``jti``
so logout can revoke it before it expires.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from jose import JWTError, jwt
from passlib.context import CryptContext

from tablet_loans.core.config import settings
from tablet_loans.core.logging import get_logger

logger = get_logger("core.security")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

TOKEN_SCOPE = "admin"

_REQUIRED_CLAIMS = {"require_sub": True, "require_jti": True, "require_exp": True}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(subject: str, expires_delta: timedelta | None = None) -> str:
    """Issue a token for the admin with id ``subject``."""
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": subject,
        "scope": TOKEN_SCOPE,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "jti": uuid4().hex,
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Return the claims of a valid admin token, or None.

    Expired, forged, malformed or wrongly scoped tokens all yield None.
    """
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options=_REQUIRED_CLAIMS,
        )
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None

    if claims.get("scope") != TOKEN_SCOPE:
        logger.warning(f"JWT rejected: unexpected scope {claims.get('scope')!r}")
        return None
    return claims


def token_expiry(claims: dict) -> datetime:
    """Expiry of decoded ``claims`` as an aware UTC datetime."""
    return datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
