"""DateTime helpers.

All timestamps in the auth subsystem are offset-naive UTC so that they compare
cleanly with values read back from SQLite and PostgreSQL ``TIMESTAMP`` columns.
"""

import math
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current UTC time without tzinfo (replacement for ``datetime.utcnow()``)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(dt: datetime) -> datetime:
    if dt is not None and dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def seconds_until(moment: datetime, now: datetime) -> int:
    """Whole seconds from ``now`` until ``moment``, never less than 1."""
    return max(1, math.ceil((naive_utc(moment) - now).total_seconds()))
