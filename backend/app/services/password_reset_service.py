"""Password reset tokens: issue, validate and single-use consumption."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from app.config import settings
from app.core.exceptions import ResetTokenInvalidError
from app.core.security import generate_reset_secret, hash_token
from app.stores.base import ResetTokenStore
from app.stores.records import ResetToken
from app.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class PasswordResetService:
    """
    Broker for password recovery tokens.

    Only the SHA-256 of each secret is persisted; the raw secret exists solely
    in the return value of ``issue_reset_token`` for delivery by email.
    Sending the email is the caller's job.
    """

    def __init__(
        self,
        reset_tokens: ResetTokenStore,
        *,
        ttl_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.reset_tokens = reset_tokens
        self.ttl = timedelta(minutes=ttl_minutes or settings.PASSWORD_RESET_TOKEN_MINUTES)
        self.clock = clock

    def issue_reset_token(self, account_id: int, requester_address: str) -> Tuple[str, ResetToken]:
        """
        Replace any unused token for the account with a fresh one

        Returns:
            (secret, token record)
        """
        now = self.clock()
        secret = generate_reset_secret()
        token = self.reset_tokens.replace_for_account(
            user_id=account_id,
            token_hash=hash_token(secret),
            expires_at=now + self.ttl,
            ip_address=requester_address,
            now=now,
        )
        logger.info("Issued password reset token for account id=%s from %s", account_id, requester_address)
        return secret, token

    def validate_reset_token(self, secret: str) -> ResetToken:
        """
        Look up a usable token by its secret

        Raises:
            ResetTokenInvalidError: unknown, expired or used (not distinguished)
        """
        if not secret:
            raise ResetTokenInvalidError()
        token = self.reset_tokens.get_by_hash(hash_token(secret))
        if token is None or not token.is_valid(self.clock()):
            raise ResetTokenInvalidError()
        return token

    def consume_reset_token(self, token: ResetToken) -> None:
        """
        Mark the token used

        Raises:
            ResetTokenInvalidError: another request consumed it first, or it expired
        """
        if not self.reset_tokens.mark_used(token.id, now=self.clock()):
            raise ResetTokenInvalidError()
