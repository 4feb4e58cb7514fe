from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from tablet_loans.db.session import get_db
from tablet_loans.api.v1.dependencies import get_current_admin, oauth2_scheme
from tablet_loans.db.models import Admin
from tablet_loans.schemas.auth import (
    TokenResponse,
    LogoutResponse,
    ChangePasswordRequest,
    ChangePasswordResponse,
    AdminResponse,
)
from tablet_loans.services.auth import (
    authenticate_admin,
    create_admin_token,
    blacklist_token,
    change_password,
)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login",
    description="Authenticate with username and password using the OAuth2 password form.",
    responses={
        200: {"description": "Login successful, JWT token returned"},
        401: {"description": "Invalid username or password"},
        422: {"description": "Validation error"},
    },
)
async def login(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Login with username and password, returns a JWT token."""
    admin = await authenticate_admin(db, form_data.username, form_data.password)
    if not admin:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = create_admin_token(admin)
    return TokenResponse(access_token=token)


@router.post(
    "/logout",
    response_model=LogoutResponse,
    summary="Logout",
    description="Invalidate the current JWT token. Requires a valid Bearer token.",
    responses={
        200: {"description": "Successfully logged out"},
        401: {"description": "Not authenticated or token already invalid"},
    },
)
async def logout(
    token: Annotated[str, Depends(oauth2_scheme)],
    current_admin: Annotated[Admin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Logout and invalidate the current JWT token."""
    await blacklist_token(db, token)
    return LogoutResponse()


@router.get(
    "/me",
    response_model=AdminResponse,
    summary="Current admin",
    description="Return the account the Bearer token belongs to.",
    responses={401: {"description": "Not authenticated"}},
)
async def me(current_admin: Annotated[Admin, Depends(get_current_admin)]):
    return current_admin


@router.post(
    "/change-password",
    response_model=ChangePasswordResponse,
    summary="Change password",
    description="Change the current admin's password. The current password must be supplied.",
    responses={
        200: {"description": "Password changed"},
        400: {"description": "Current password is wrong or the new one is unchanged"},
        401: {"description": "Not authenticated"},
        422: {"description": "Validation error"},
    },
)
async def change_password_endpoint(
    data: ChangePasswordRequest,
    current_admin: Annotated[Admin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    try:
        await change_password(db, current_admin, data.current_password, data.new_password)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return ChangePasswordResponse()
