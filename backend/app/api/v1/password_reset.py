"""Password reset routes"""

from fastapi import APIRouter, BackgroundTasks, Depends, status

from app.config import settings
from app.schemas.user import PasswordResetConfirm, PasswordResetRequest, ResetTokenStatus
from app.schemas.response import APIResponse
from app.services.auth_service import AuthService
from app.services.rate_limiter import rate_limiter
from app.api.deps import get_auth_service, get_client_ip
from app.core.exceptions import RateLimitExceededError

router = APIRouter()

RESET_REQUESTED_MESSAGE = (
    "If an account with that email exists, a password reset link has been sent."
)


@router.post("/request", response_model=APIResponse, status_code=status.HTTP_200_OK)
def request_password_reset(
    body: PasswordResetRequest,
    background_tasks: BackgroundTasks,
    client_ip: str = Depends(get_client_ip),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Ask for a reset link

    The response is identical whether or not the email is registered; the
    email itself is sent after the response.
    """
    key = f"reset:hour:{client_ip}"
    if not rate_limiter.allow(key, settings.RESET_REQUEST_RATE_LIMIT_PER_HOUR, 3600):
        raise RateLimitExceededError(
            "Too many password reset requests. Please try again later.",
            retry_after=rate_limiter.retry_after(key, 3600),
        )

    auth_service.request_password_reset(body.email, client_ip, schedule=background_tasks.add_task)
    return APIResponse(message=RESET_REQUESTED_MESSAGE)


@router.get("/verify/{token}", response_model=ResetTokenStatus)
def verify_reset_token(
    token: str,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Check a reset token before showing the new-password form"""
    return ResetTokenStatus(**auth_service.verify_reset_token(token))


@router.post("/reset", response_model=APIResponse, status_code=status.HTTP_200_OK)
def reset_password(
    body: PasswordResetConfirm,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Set a new password with a reset token

    Returns:
        Success message; the token cannot be used again
    """
    auth_service.confirm_password_reset(body.token, body.new_password, body.confirm_password)
    return APIResponse(message="Password has been reset. You can now log in with your new password.")
