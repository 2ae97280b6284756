"""Custom exception classes for the application"""

from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, status_code=401, details=details)


class InvalidCredentialsError(AuthenticationError):
    """Wrong email/password combination, or no such account"""
    def __init__(self):
        super().__init__("Invalid email or password")


class TokenInvalidError(AuthenticationError):
    """JWT token is malformed or its signature does not verify"""
    def __init__(self):
        super().__init__("Invalid or malformed token", details={"reason": "token_invalid"})


class TokenExpiredError(AuthenticationError):
    """JWT token has expired"""
    def __init__(self):
        super().__init__("Token has expired. Please log in again", details={"reason": "token_expired"})


class TokenRevokedError(AuthenticationError):
    """JWT token was explicitly revoked"""
    def __init__(self):
        super().__init__("Token has been revoked. Please log in again", details={"reason": "token_revoked"})


class AccountLockedError(BaseAPIException):
    """Account is locked due to failed login attempts"""
    def __init__(self, locked_until: str, retry_after: int):
        self.retry_after = retry_after
        super().__init__(
            "Account is locked. Try again in a few minutes",
            status_code=423,
            details={"locked_until": locked_until, "retry_after": retry_after}
        )


# Resource Errors
class ResourceAlreadyExistsError(BaseAPIException):
    """Resource already exists"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} already exists", status_code=409)


class DuplicateEmailError(ResourceAlreadyExistsError):
    """Email already registered"""
    def __init__(self):
        super().__init__("An account with this email")


# Validation Errors
class ValidationError(BaseAPIException):
    """Validation error"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=422, details=details)


# Business Logic Errors
class BusinessLogicError(BaseAPIException):
    """Business logic error"""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class ResetTokenInvalidError(BusinessLogicError):
    """Reset token unknown, expired or already used (deliberately undifferentiated)"""
    def __init__(self):
        super().__init__("Invalid or expired reset token")


# System Errors
class DatabaseError(BaseAPIException):
    """Database operation failed"""
    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message, status_code=500)


class PasswordHashingError(BaseAPIException):
    """Password hash computation failed"""
    def __init__(self, message: str = "Password hashing failed"):
        super().__init__(message, status_code=500)


class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        retry_after: Optional[int] = None
    ):
        self.retry_after = retry_after
        details = {"retry_after": retry_after} if retry_after is not None else None
        super().__init__(message, status_code=429, details=details)


class AddressBlockedError(RateLimitExceededError):
    """Too many failed logins from one network address"""
    def __init__(self, retry_after: int):
        super().__init__(
            "Too many failed login attempts from this address. Try again later.",
            retry_after=retry_after
        )
