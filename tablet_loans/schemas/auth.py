from datetime import datetime
from pydantic import BaseModel, Field


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LogoutResponse(BaseModel):
    message: str = "Successfully logged out"


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=72)


class ChangePasswordResponse(BaseModel):
    message: str = "Password changed successfully"


class AdminResponse(BaseModel):
    id: str
    username: str
    is_built_in: bool
    created_at: datetime

    model_config = {"from_attributes": True}
