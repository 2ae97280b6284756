"""API dependencies - service wiring, caller identity and authentication"""

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
import ipaddress
import logging

from app.config import settings
from app.core.database import get_db
from app.core.exceptions import TokenInvalidError
from app.services.auth_service import AuthService
from app.services.email_service import EmailService
from app.stores.records import Account
from app.stores.sql import sql_stores

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme; missing headers are reported as invalid tokens
security = HTTPBearer(auto_error=False)


def get_email_service() -> EmailService:
    return EmailService.from_settings()


def get_auth_service(
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> AuthService:
    """
    Build the orchestrator around stores bound to this request's session

    Args:
        db: Database session
        email_service: Reset email sender

    Returns:
        AuthService for the current request
    """
    return AuthService(sql_stores(db), email_service=email_service)


def get_client_ip(request: Request) -> str:
    """
    Caller's network address

    With TRUST_FORWARDED_FOR set, X-Forwarded-For is read from the right:
    each of the TRUSTED_PROXY_COUNT proxies appends one hop, so the hop that
    many places from the end is the one our outermost proxy saw. Hops to its
    left are client-supplied. Anything that is not an IP address falls back
    to the socket peer.
    """
    peer = request.client.host if request.client else "unknown"
    if not settings.TRUST_FORWARDED_FOR:
        return peer

    hops = [hop.strip() for hop in request.headers.get("X-Forwarded-For", "").split(",") if hop.strip()]
    depth = max(1, settings.TRUSTED_PROXY_COUNT)
    if len(hops) < depth:
        return peer
    try:
        return str(ipaddress.ip_address(hops[-depth]))
    except ValueError:
        logger.warning("Ignoring unparseable X-Forwarded-For hop from %s", peer)
        return peer


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Raw bearer token from the Authorization header

    Raises:
        TokenInvalidError: Header missing or not a bearer credential
    """
    if credentials is None or not credentials.credentials:
        raise TokenInvalidError()
    return credentials.credentials


def get_current_account(
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> Account:
    """
    Get current authenticated account from the bearer token

    Raises:
        TokenRevokedError, TokenExpiredError, TokenInvalidError: Token unusable
        AuthenticationError: Account missing or disabled
    """
    return auth_service.current_account(token)
