"""Per-address failed-login tracking, independent of account identity."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from app.config import settings
from app.core.exceptions import AddressBlockedError
from app.core.metrics import LOCKOUTS
from app.stores.base import LoginAttemptStore
from app.utils.datetime_utils import seconds_until, utc_now

logger = logging.getLogger(__name__)


class IPAttemptTracker:
    """Five failed logins from one address block it for ten minutes."""

    def __init__(
        self,
        attempts: LoginAttemptStore,
        *,
        max_failed_attempts: Optional[int] = None,
        block_minutes: Optional[int] = None,
        window_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.attempts = attempts
        self.max_failed_attempts = max_failed_attempts or settings.IP_MAX_FAILED_ATTEMPTS
        self.block_duration = timedelta(minutes=block_minutes or settings.IP_BLOCK_MINUTES)
        self.window = timedelta(minutes=window_minutes or settings.IP_ATTEMPT_WINDOW_MINUTES)
        self.clock = clock

    def check_allowed(self, ip_address: str) -> None:
        """
        Raise AddressBlockedError while the address is inside its block window.

        Never consults account data, so the outcome cannot reveal whether an
        email is registered.
        """
        attempt = self.attempts.get(ip_address)
        if attempt is None:
            return
        now = self.clock()
        if attempt.is_blocked(now):
            raise AddressBlockedError(retry_after=seconds_until(attempt.blocked_until, now))

    def record_failure(self, ip_address: str) -> None:
        now = self.clock()
        attempt = self.attempts.register_failure(
            ip_address,
            now=now,
            window_start=now - self.window,
            threshold=self.max_failed_attempts,
            block_until=now + self.block_duration,
        )
        # Only the request that crossed the threshold reports the block
        if attempt.blocked_until is not None and attempt.failed_attempts == self.max_failed_attempts:
            LOCKOUTS.labels("address").inc()
            logger.warning(
                "Address %s blocked until %s after %s failed logins",
                ip_address,
                attempt.blocked_until.isoformat(),
                attempt.failed_attempts,
            )

    def clear(self, ip_address: str) -> None:
        self.attempts.delete(ip_address)
