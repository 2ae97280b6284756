"""Plain records returned by the stores.

Services work with these instead of ORM instances so that the SQL and
in-memory stores are interchangeable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class RevocationReason(str, Enum):
    """Why a session token was revoked"""
    LOGOUT = "logout"
    SECURITY = "security"
    EXPIRED = "expired"


@dataclass
class Account:
    id: int
    email: str
    first_name: str
    last_name: str
    age: int
    password_hash: str = field(repr=False)
    is_active: bool = True
    failed_login_attempts: int = 0
    locked_until: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.first_name

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "age": self.age,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "last_login": self.last_login,
        }


@dataclass
class LoginAttempt:
    ip_address: str
    failed_attempts: int
    last_attempt_at: datetime
    blocked_until: Optional[datetime] = None

    def is_blocked(self, now: datetime) -> bool:
        return self.blocked_until is not None and self.blocked_until > now


@dataclass
class RevokedToken:
    token_fingerprint: str
    user_id: Optional[int]
    reason: RevocationReason
    revoked_at: datetime
    expires_at: datetime


@dataclass
class ResetToken:
    id: int
    user_id: int
    token_hash: str = field(repr=False)
    expires_at: datetime
    ip_address: str
    used: bool = False
    used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def is_valid(self, now: datetime) -> bool:
        return not self.used and self.expires_at > now
