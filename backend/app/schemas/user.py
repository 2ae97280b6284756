"""Account and authentication schemas"""

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import Optional
from datetime import datetime


class RegisterRequest(BaseModel):
    """Registration schema"""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    confirm_password: str
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    age: int = Field(..., ge=13, le=120)

    @field_validator('first_name', 'last_name')
    @classmethod
    def strip_names(cls, v):
        """Names may not be blank once trimmed"""
        v = v.strip()
        if len(v) < 2:
            raise ValueError('Must be at least 2 characters')
        return v

    @model_validator(mode='after')
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError('Passwords do not match')
        return self


class LoginRequest(BaseModel):
    """Login schema"""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class UserResponse(BaseModel):
    """Account summary returned to the owner"""
    id: int
    email: str
    first_name: str
    last_name: str
    age: int
    is_active: bool
    created_at: Optional[datetime]
    last_login: Optional[datetime]

    class Config:
        from_attributes = True


class RegisteredUser(BaseModel):
    """Payload of a successful registration"""
    id: int
    email: str
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    """JWT token response"""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class PasswordResetRequest(BaseModel):
    """Ask for a reset link"""
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    """Set a new password with a reset token"""
    token: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=8, max_length=128)
    confirm_password: str


class ResetTokenStatus(BaseModel):
    """Result of checking a reset token"""
    valid: bool
    email: str
    expires_at: datetime
