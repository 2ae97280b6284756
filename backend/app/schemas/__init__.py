"""Pydantic schemas for API validation"""

from app.schemas.user import (
    RegisterRequest,
    RegisteredUser,
    LoginRequest,
    UserResponse,
    TokenResponse,
    PasswordResetRequest,
    PasswordResetConfirm,
    ResetTokenStatus,
)
from app.schemas.response import APIResponse, ErrorResponse

__all__ = [
    "RegisterRequest", "RegisteredUser", "LoginRequest", "UserResponse", "TokenResponse",
    "PasswordResetRequest", "PasswordResetConfirm", "ResetTokenStatus",
    "APIResponse", "ErrorResponse",
]
