"""Session token issuance, validation and revocation."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional
import logging

from jose import ExpiredSignatureError, JWTError

from app.config import settings
from app.core.exceptions import TokenExpiredError, TokenInvalidError, TokenRevokedError
from app.core.metrics import TOKEN_REJECTIONS
from app.core.security import create_access_token, decode_access_token, hash_token
from app.stores.base import RevocationStore
from app.stores.records import Account, RevocationReason, RevokedToken
from app.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class TokenService:
    """Issue signed session tokens and check them against the revocation store."""

    def __init__(
        self,
        revocations: RevocationStore,
        *,
        lifetime_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.revocations = revocations
        self.lifetime = timedelta(minutes=lifetime_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self.clock = clock

    @property
    def lifetime_seconds(self) -> int:
        return int(self.lifetime.total_seconds())

    def issue(self, account: Account) -> str:
        """Signed token for ``account``; the random ``jti`` keeps every token distinct."""
        return create_access_token(
            {"sub": str(account.id), "email": account.email},
            expires_delta=self.lifetime,
            issued_at=self.clock(),
        )

    def validate(self, token: str) -> Dict[str, Any]:
        """
        Return the claims of a usable token

        The revocation check runs first so known-bad tokens cost no
        signature verification.

        Raises:
            TokenRevokedError: Token was revoked
            TokenExpiredError: Token is past its expiry
            TokenInvalidError: Token is malformed or tampered with
        """
        if not token:
            TOKEN_REJECTIONS.labels("invalid").inc()
            raise TokenInvalidError()

        if self.revocations.contains(hash_token(token)):
            TOKEN_REJECTIONS.labels("revoked").inc()
            raise TokenRevokedError()

        try:
            payload = decode_access_token(token)
        except ExpiredSignatureError:
            TOKEN_REJECTIONS.labels("expired").inc()
            raise TokenExpiredError()
        except JWTError:
            TOKEN_REJECTIONS.labels("invalid").inc()
            raise TokenInvalidError()

        if payload.get("typ") != "access" or not str(payload.get("sub", "")).isdigit():
            TOKEN_REJECTIONS.labels("invalid").inc()
            raise TokenInvalidError()
        return payload

    def owner_of(self, token: str) -> Optional[int]:
        """
        Account id of a token that carries a genuine signature, expired or not.

        Returns None for malformed or tampered tokens.
        """
        try:
            payload = decode_access_token(token, verify_exp=False)
        except JWTError:
            return None
        sub = str(payload.get("sub", ""))
        return int(sub) if sub.isdigit() else None

    def revoke(
        self,
        token: str,
        account_id: Optional[int] = None,
        reason: RevocationReason = RevocationReason.LOGOUT,
    ) -> None:
        """Record ``token`` as revoked; revoking twice is a no-op."""
        now = self.clock()
        added = self.revocations.add(RevokedToken(
            token_fingerprint=hash_token(token),
            user_id=account_id,
            reason=RevocationReason(reason),
            revoked_at=now,
            # Kept for the longest lifetime a token can have
            expires_at=now + self.lifetime,
        ))
        if added:
            logger.info("Token revoked account_id=%s reason=%s", account_id, RevocationReason(reason).value)
