"""Authentication routes"""

from fastapi import APIRouter, Depends, status

from app.config import settings
from app.schemas.user import (
    LoginRequest,
    RegisterRequest,
    RegisteredUser,
    TokenResponse,
    UserResponse,
)
from app.schemas.response import APIResponse
from app.services.auth_service import AuthService
from app.services.rate_limiter import rate_limiter
from app.api.deps import get_auth_service, get_bearer_token, get_client_ip, get_current_account
from app.stores.records import Account
from app.core.exceptions import RateLimitExceededError

router = APIRouter()


@router.post("/register", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    client_ip: str = Depends(get_client_ip),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Register a new account

    Args:
        body: Email, password and profile

    Returns:
        Created account id, email and creation time
    """
    key = f"register:hour:{client_ip}"
    if not rate_limiter.allow(key, settings.REGISTER_RATE_LIMIT_PER_HOUR, 3600):
        raise RateLimitExceededError(
            "Too many registrations from this address. Please try again later.",
            retry_after=rate_limiter.retry_after(key, 3600),
        )

    account = auth_service.register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        age=body.age,
    )
    return APIResponse(
        message="Account created successfully",
        data=RegisteredUser.model_validate(account).model_dump(mode="json"),
    )


@router.post("/login", response_model=TokenResponse, status_code=status.HTTP_200_OK)
def login(
    credentials: LoginRequest,
    client_ip: str = Depends(get_client_ip),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Login endpoint - authenticate and return a JWT token

    Args:
        credentials: Email and password

    Returns:
        JWT token and account info
    """
    result = auth_service.login(credentials.email, credentials.password, client_ip)
    return TokenResponse(
        access_token=result.access_token,
        token_type=result.token_type,
        expires_in=result.expires_in,
        user=UserResponse.model_validate(result.account),
    )


@router.post("/logout", status_code=status.HTTP_200_OK)
def logout(
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Logout endpoint - revoke the presented token

    Succeeds for tokens that are already revoked or expired.
    """
    auth_service.logout(token)
    return {
        "success": True,
        "message": "Logged out successfully",
    }


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    current_account: Account = Depends(get_current_account)
):
    """Get current account information"""
    return UserResponse.model_validate(current_account)
