"""Background purge of stale authentication rows."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.core.database import SessionLocal
from app.core.metrics import HOUSEKEEPING_PURGED
from app.stores.base import Stores
from app.stores.sql import sql_stores
from app.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class HousekeepingWorker:
    """
    Periodically reclaims storage: idle address counters, used or expired
    reset tokens and revocations past their retention.

    Every validity check is re-evaluated at read time, so nothing depends on
    this worker having run.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        interval_seconds: Optional[float] = None,
        attempt_retention_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._interval = interval_seconds or settings.HOUSEKEEPING_INTERVAL_SECONDS
        self._attempt_retention = timedelta(
            minutes=attempt_retention_minutes or settings.IP_ATTEMPT_RETENTION_MINUTES
        )
        self._clock = clock
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._heartbeat: float = 0.0
        self._runs: int = 0

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="auth-housekeeping", daemon=True)
        self._thread.start()
        logger.info("Housekeeping worker started (interval %.0fs)", self._interval)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("Housekeeping worker stopped")

    def status(self) -> dict:
        return {
            "running": self.is_running(),
            "last_heartbeat": self._heartbeat,
            "runs": self._runs,
        }

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as exc:
                logger.exception("Housekeeping pass failed: %s", exc)
            self._heartbeat = time.time()
            self._stop_event.wait(max(1.0, self._interval))

    def run_once(self, stores: Optional[Stores] = None) -> Dict[str, int]:
        """
        Run one purge pass

        Args:
            stores: Store set to purge; a fresh SQL session is used when omitted

        Returns:
            Rows removed per table
        """
        if stores is not None:
            return self._purge(stores)

        db = self._session_factory()
        try:
            return self._purge(sql_stores(db))
        finally:
            db.close()

    def _purge(self, stores: Stores) -> Dict[str, int]:
        now = self._clock()
        purged = {
            "login_attempts": stores.login_attempts.purge_stale(now=now, before=now - self._attempt_retention),
            "password_reset_tokens": stores.reset_tokens.purge(now),
            "revoked_tokens": stores.revocations.purge_expired(now),
        }
        for table, count in purged.items():
            if count:
                HOUSEKEEPING_PURGED.labels(table).inc(count)
        self._runs += 1
        if any(purged.values()):
            logger.info("Housekeeping purged %s", purged)
        return purged


housekeeping_worker = HousekeepingWorker()
