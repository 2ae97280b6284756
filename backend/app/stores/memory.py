"""In-process stores for tests and single-node development.

All four stores share one ``MemoryBackend`` whose re-entrant lock makes every
operation (and every ``transaction()`` block) atomic with respect to the
others. Records are copied on the way in and out so callers never hold live
store state.
"""

from __future__ import annotations

import itertools
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Iterator, Optional

from app.core.exceptions import DuplicateEmailError
from app.stores.base import (
    AccountStore,
    LoginAttemptStore,
    ResetTokenStore,
    RevocationStore,
    Stores,
)
from app.stores.records import Account, LoginAttempt, ResetToken, RevokedToken


class MemoryBackend:
    """Shared tables and lock for the in-memory stores."""

    TABLES = ("accounts", "login_attempts", "revoked_tokens", "reset_tokens")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.accounts: Dict[int, Account] = {}
        self.login_attempts: Dict[str, LoginAttempt] = {}
        self.revoked_tokens: Dict[str, RevokedToken] = {}
        self.reset_tokens: Dict[int, ResetToken] = {}
        self._account_ids = itertools.count(1)
        self._reset_token_ids = itertools.count(1)

    def next_account_id(self) -> int:
        return next(self._account_ids)

    def next_reset_token_id(self) -> int:
        return next(self._reset_token_ids)

    def _snapshot(self) -> Dict[str, dict]:
        return {
            name: {key: replace(record) for key, record in getattr(self, name).items()}
            for name in self.TABLES
        }

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Hold the lock for the whole block; restore every table if it raises."""
        with self.lock:
            snapshot = self._snapshot()
            try:
                yield
            except Exception:
                for name, table in snapshot.items():
                    setattr(self, name, table)
                raise


class _MemoryStore:

    def __init__(self, backend: MemoryBackend) -> None:
        self.backend = backend


class MemoryAccountStore(_MemoryStore, AccountStore):

    def create(self, *, email, first_name, last_name, age, password_hash, now) -> Account:
        with self.backend.lock:
            if any(a.email == email for a in self.backend.accounts.values()):
                raise DuplicateEmailError()
            account = Account(
                id=self.backend.next_account_id(),
                email=email,
                first_name=first_name,
                last_name=last_name,
                age=age,
                password_hash=password_hash,
                created_at=now,
            )
            self.backend.accounts[account.id] = account
            return replace(account)

    def get(self, account_id: int) -> Optional[Account]:
        with self.backend.lock:
            account = self.backend.accounts.get(account_id)
            return replace(account) if account else None

    def get_by_email(self, email: str) -> Optional[Account]:
        with self.backend.lock:
            for account in self.backend.accounts.values():
                if account.email == email:
                    return replace(account)
            return None

    def increment_failed_attempts(self, account_id, *, now, threshold, lock_until) -> Optional[Account]:
        with self.backend.lock:
            account = self.backend.accounts.get(account_id)
            if account is None:
                return None
            if account.locked_until is not None and account.locked_until <= now:
                account.failed_login_attempts = 1
                account.locked_until = None
            else:
                account.failed_login_attempts += 1
                if account.locked_until is None and account.failed_login_attempts >= threshold:
                    account.locked_until = lock_until
            return replace(account)

    def reset_failed_attempts(self, account_id, *, last_login=None) -> Optional[Account]:
        with self.backend.lock:
            account = self.backend.accounts.get(account_id)
            if account is None:
                return None
            account.failed_login_attempts = 0
            account.locked_until = None
            if last_login is not None:
                account.last_login = last_login
            return replace(account)

    def set_password_hash(self, account_id, password_hash) -> Optional[Account]:
        with self.backend.lock:
            account = self.backend.accounts.get(account_id)
            if account is None:
                return None
            account.password_hash = password_hash
            account.failed_login_attempts = 0
            account.locked_until = None
            return replace(account)


class MemoryLoginAttemptStore(_MemoryStore, LoginAttemptStore):

    def get(self, ip_address: str) -> Optional[LoginAttempt]:
        with self.backend.lock:
            attempt = self.backend.login_attempts.get(ip_address)
            return replace(attempt) if attempt else None

    def register_failure(self, ip_address, *, now, window_start, threshold, block_until) -> LoginAttempt:
        with self.backend.lock:
            attempt = self.backend.login_attempts.get(ip_address)
            if attempt is None:
                attempt = LoginAttempt(ip_address=ip_address, failed_attempts=0, last_attempt_at=now)
                self.backend.login_attempts[ip_address] = attempt

            if attempt.blocked_until is not None:
                window_over = attempt.blocked_until <= now
            else:
                window_over = attempt.last_attempt_at < window_start

            if window_over:
                attempt.failed_attempts = 1
                attempt.blocked_until = None
            else:
                attempt.failed_attempts += 1
                if attempt.blocked_until is None and attempt.failed_attempts >= threshold:
                    attempt.blocked_until = block_until
            attempt.last_attempt_at = now
            return replace(attempt)

    def delete(self, ip_address: str) -> None:
        with self.backend.lock:
            self.backend.login_attempts.pop(ip_address, None)

    def purge_stale(self, *, now, before) -> int:
        with self.backend.lock:
            stale = [
                ip for ip, attempt in self.backend.login_attempts.items()
                if attempt.last_attempt_at < before and not attempt.is_blocked(now)
            ]
            for ip in stale:
                del self.backend.login_attempts[ip]
            return len(stale)


class MemoryRevocationStore(_MemoryStore, RevocationStore):

    def add(self, record: RevokedToken) -> bool:
        with self.backend.lock:
            if record.token_fingerprint in self.backend.revoked_tokens:
                return False
            self.backend.revoked_tokens[record.token_fingerprint] = replace(record)
            return True

    def contains(self, token_fingerprint: str) -> bool:
        with self.backend.lock:
            return token_fingerprint in self.backend.revoked_tokens

    def purge_expired(self, now) -> int:
        with self.backend.lock:
            expired = [fp for fp, r in self.backend.revoked_tokens.items() if r.expires_at <= now]
            for fp in expired:
                del self.backend.revoked_tokens[fp]
            return len(expired)


class MemoryResetTokenStore(_MemoryStore, ResetTokenStore):

    def replace_for_account(self, *, user_id, token_hash, expires_at, ip_address, now) -> ResetToken:
        with self.backend.lock:
            tokens = self.backend.reset_tokens
            for token_id in [tid for tid, t in tokens.items() if t.user_id == user_id and not t.used]:
                del tokens[token_id]
            token = ResetToken(
                id=self.backend.next_reset_token_id(),
                user_id=user_id,
                token_hash=token_hash,
                expires_at=expires_at,
                ip_address=ip_address,
                created_at=now,
            )
            tokens[token.id] = token
            return replace(token)

    def get_by_hash(self, token_hash: str) -> Optional[ResetToken]:
        with self.backend.lock:
            for token in self.backend.reset_tokens.values():
                if token.token_hash == token_hash:
                    return replace(token)
            return None

    def mark_used(self, token_id: int, *, now) -> bool:
        with self.backend.lock:
            token = self.backend.reset_tokens.get(token_id)
            if token is None or not token.is_valid(now):
                return False
            token.used = True
            token.used_at = now
            return True

    def purge(self, now) -> int:
        with self.backend.lock:
            dead = [tid for tid, t in self.backend.reset_tokens.items() if t.used or t.expires_at <= now]
            for token_id in dead:
                del self.backend.reset_tokens[token_id]
            return len(dead)


def memory_stores(backend: Optional[MemoryBackend] = None) -> Stores:
    backend = backend or MemoryBackend()
    return Stores(
        accounts=MemoryAccountStore(backend),
        login_attempts=MemoryLoginAttemptStore(backend),
        revocations=MemoryRevocationStore(backend),
        reset_tokens=MemoryResetTokenStore(backend),
        transaction=backend.transaction,
    )
