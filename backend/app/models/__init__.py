"""Database models"""

from app.models.user import User
from app.models.security import LoginAttempt, RevokedToken, PasswordResetToken

__all__ = ["User", "LoginAttempt", "RevokedToken", "PasswordResetToken"]
