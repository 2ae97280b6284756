"""Narrow store interfaces for the authentication subsystem.

Each entity gets its own store with only the operations the services need.
The counter and single-use transitions are atomic primitives: implementations
must apply them as one conditional write, never as read-then-write.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, ContextManager, Optional

from app.stores.records import Account, LoginAttempt, ResetToken, RevokedToken


class AccountStore(ABC):

    @abstractmethod
    def create(
        self,
        *,
        email: str,
        first_name: str,
        last_name: str,
        age: int,
        password_hash: str,
        now: datetime,
    ) -> Account:
        """Insert a new account. Raises DuplicateEmailError if the email is taken."""

    @abstractmethod
    def get(self, account_id: int) -> Optional[Account]:
        ...

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[Account]:
        """Look up by normalized (lower-cased) email."""

    @abstractmethod
    def increment_failed_attempts(
        self,
        account_id: int,
        *,
        now: datetime,
        threshold: int,
        lock_until: datetime,
    ) -> Optional[Account]:
        """
        Atomically count one failed authentication.

        A lock that has already run out is cleared and counting restarts at 1.
        Otherwise the counter is incremented and, if it reaches ``threshold``
        while no lock is set, ``locked_until`` becomes ``lock_until``. An
        active lock is never extended.
        """

    @abstractmethod
    def reset_failed_attempts(self, account_id: int, *, last_login: Optional[datetime] = None) -> Optional[Account]:
        """Zero the counter and clear the lock; stamp ``last_login`` when given."""

    @abstractmethod
    def set_password_hash(self, account_id: int, password_hash: str) -> Optional[Account]:
        """Replace the hash and clear lockout state in the same write."""


class LoginAttemptStore(ABC):

    @abstractmethod
    def get(self, ip_address: str) -> Optional[LoginAttempt]:
        ...

    @abstractmethod
    def register_failure(
        self,
        ip_address: str,
        *,
        now: datetime,
        window_start: datetime,
        threshold: int,
        block_until: datetime,
    ) -> LoginAttempt:
        """
        Atomically create-or-increment the address counter.

        An entry whose last attempt is strictly before ``window_start`` (and that
        is not blocked), or whose block has run out, restarts at 1. Reaching
        ``threshold`` while unblocked sets ``blocked_until``; an active block is
        never extended.
        """

    @abstractmethod
    def delete(self, ip_address: str) -> None:
        ...

    @abstractmethod
    def purge_stale(self, *, now: datetime, before: datetime) -> int:
        """Drop unblocked entries with no attempt since ``before``."""


class RevocationStore(ABC):

    @abstractmethod
    def add(self, record: RevokedToken) -> bool:
        """Insert if absent. Returns False (not an error) when already revoked."""

    @abstractmethod
    def contains(self, token_fingerprint: str) -> bool:
        ...

    @abstractmethod
    def purge_expired(self, now: datetime) -> int:
        ...


class ResetTokenStore(ABC):

    @abstractmethod
    def replace_for_account(
        self,
        *,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
        ip_address: str,
        now: datetime,
    ) -> ResetToken:
        """Delete the account's unused tokens and insert a new one, atomically."""

    @abstractmethod
    def get_by_hash(self, token_hash: str) -> Optional[ResetToken]:
        ...

    @abstractmethod
    def mark_used(self, token_id: int, *, now: datetime) -> bool:
        """
        Flip ``used`` from False to True if the token is still unexpired.

        Exactly one concurrent caller can get True for a given token.
        """

    @abstractmethod
    def purge(self, now: datetime) -> int:
        """Drop used and expired tokens."""


@dataclass
class Stores:
    """Store handles sharing one backend, plus its transaction scope."""

    accounts: AccountStore
    login_attempts: LoginAttemptStore
    revocations: RevocationStore
    reset_tokens: ResetTokenStore
    transaction: Callable[[], ContextManager[None]]
