"""SQLAlchemy-backed stores.

Counter and single-use transitions are single ``UPDATE ... WHERE`` statements;
the database serializes concurrent writers on the row and ``rowcount`` tells
the caller whether its transition won.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import DateTime, and_, case, delete, literal, null, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import DatabaseError, DuplicateEmailError
from app.models.security import LoginAttempt as LoginAttemptRow
from app.models.security import PasswordResetToken as ResetTokenRow
from app.models.security import RevokedToken as RevokedTokenRow
from app.models.user import User
from app.stores.base import (
    AccountStore,
    LoginAttemptStore,
    ResetTokenStore,
    RevocationStore,
    Stores,
)
from app.stores.records import (
    Account,
    LoginAttempt,
    ResetToken,
    RevocationReason,
    RevokedToken,
)
from app.utils.datetime_utils import naive_utc

logger = logging.getLogger(__name__)

_UOW_DEPTH = "uow_depth"


@contextmanager
def unit_of_work(db: Session) -> Iterator[None]:
    """
    Group store writes into one transaction.

    Stores only flush while a unit of work is open; the outermost scope
    commits on success and rolls back on any exception.
    """
    depth = db.info.get(_UOW_DEPTH, 0)
    db.info[_UOW_DEPTH] = depth + 1
    try:
        yield
    except Exception:
        db.info[_UOW_DEPTH] = depth
        if depth == 0:
            db.rollback()
        raise
    db.info[_UOW_DEPTH] = depth
    if depth == 0:
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise DatabaseError() from exc


class _SqlStore:

    def __init__(self, db: Session) -> None:
        self.db = db

    def _commit(self) -> None:
        if self.db.info.get(_UOW_DEPTH):
            self.db.flush()
            return
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Database commit failed: %s", exc)
            raise DatabaseError() from exc


def _to_account(row: User) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        age=row.age,
        password_hash=row.password_hash,
        is_active=row.is_active,
        failed_login_attempts=row.failed_login_attempts or 0,
        locked_until=naive_utc(row.locked_until),
        last_login=naive_utc(row.last_login),
        created_at=naive_utc(row.created_at),
    )


def _to_login_attempt(row: LoginAttemptRow) -> LoginAttempt:
    return LoginAttempt(
        ip_address=row.ip_address,
        failed_attempts=row.failed_attempts,
        last_attempt_at=naive_utc(row.last_attempt_at),
        blocked_until=naive_utc(row.blocked_until),
    )


def _to_reset_token(row: ResetTokenRow) -> ResetToken:
    return ResetToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=naive_utc(row.expires_at),
        ip_address=row.ip_address,
        used=row.used,
        used_at=naive_utc(row.used_at),
        created_at=naive_utc(row.created_at),
    )


class SqlAccountStore(_SqlStore, AccountStore):

    def _row(self, account_id: int) -> Optional[User]:
        return self.db.get(User, account_id, populate_existing=True)

    def create(self, *, email, first_name, last_name, age, password_hash, now) -> Account:
        if self.db.query(User.id).filter(User.email == email).first():
            raise DuplicateEmailError()

        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            age=age,
            password_hash=password_hash,
            is_active=True,
            failed_login_attempts=0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(user)
        try:
            self.db.flush()
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same email
            self.db.rollback()
            raise DuplicateEmailError() from exc
        self._commit()
        return _to_account(user)

    def get(self, account_id: int) -> Optional[Account]:
        row = self._row(account_id)
        return _to_account(row) if row else None

    def get_by_email(self, email: str) -> Optional[Account]:
        row = (
            self.db.query(User)
            .populate_existing()
            .filter(User.email == email)
            .first()
        )
        return _to_account(row) if row else None

    def increment_failed_attempts(self, account_id, *, now, threshold, lock_until) -> Optional[Account]:
        lock_expired = and_(User.locked_until.isnot(None), User.locked_until <= now)
        next_count = User.failed_login_attempts + 1

        result = self.db.execute(
            update(User)
            .where(User.id == account_id)
            .values(
                failed_login_attempts=case((lock_expired, 1), else_=next_count),
                locked_until=case(
                    (lock_expired, null()),
                    (
                        and_(User.locked_until.is_(None), next_count >= threshold),
                        literal(lock_until, DateTime()),
                    ),
                    else_=User.locked_until,
                ),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self._commit()
        if result.rowcount == 0:
            return None
        return self.get(account_id)

    def reset_failed_attempts(self, account_id, *, last_login=None) -> Optional[Account]:
        values = {"failed_login_attempts": 0, "locked_until": None}
        if last_login is not None:
            values["last_login"] = last_login
        result = self.db.execute(
            update(User)
            .where(User.id == account_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self._commit()
        if result.rowcount == 0:
            return None
        return self.get(account_id)

    def set_password_hash(self, account_id, password_hash) -> Optional[Account]:
        result = self.db.execute(
            update(User)
            .where(User.id == account_id)
            .values(password_hash=password_hash, failed_login_attempts=0, locked_until=None)
            .execution_options(synchronize_session=False)
        )
        self._commit()
        if result.rowcount == 0:
            return None
        return self.get(account_id)


class SqlLoginAttemptStore(_SqlStore, LoginAttemptStore):

    def _row(self, ip_address: str) -> Optional[LoginAttemptRow]:
        return (
            self.db.query(LoginAttemptRow)
            .populate_existing()
            .filter(LoginAttemptRow.ip_address == ip_address)
            .first()
        )

    def get(self, ip_address: str) -> Optional[LoginAttempt]:
        row = self._row(ip_address)
        return _to_login_attempt(row) if row else None

    def _increment(self, ip_address, *, now, window_start, threshold, block_until):
        window_over = or_(
            and_(LoginAttemptRow.blocked_until.is_(None), LoginAttemptRow.last_attempt_at < window_start),
            and_(LoginAttemptRow.blocked_until.isnot(None), LoginAttemptRow.blocked_until <= now),
        )
        next_count = LoginAttemptRow.failed_attempts + 1
        return self.db.execute(
            update(LoginAttemptRow)
            .where(LoginAttemptRow.ip_address == ip_address)
            .values(
                failed_attempts=case((window_over, 1), else_=next_count),
                blocked_until=case(
                    (window_over, null()),
                    (
                        and_(LoginAttemptRow.blocked_until.is_(None), next_count >= threshold),
                        literal(block_until, DateTime()),
                    ),
                    else_=LoginAttemptRow.blocked_until,
                ),
                last_attempt_at=now,
            )
            .execution_options(synchronize_session=False)
        )

    def register_failure(self, ip_address, *, now, window_start, threshold, block_until) -> LoginAttempt:
        result = self._increment(
            ip_address, now=now, window_start=window_start, threshold=threshold, block_until=block_until
        )
        if result.rowcount == 0:
            self.db.add(LoginAttemptRow(
                ip_address=ip_address,
                failed_attempts=1,
                last_attempt_at=now,
                blocked_until=block_until if threshold <= 1 else None,
            ))
            try:
                self.db.flush()
            except IntegrityError:
                # A concurrent request created the row first; count against it
                self.db.rollback()
                self._increment(
                    ip_address, now=now, window_start=window_start, threshold=threshold, block_until=block_until
                )
        self._commit()
        return self.get(ip_address)

    def delete(self, ip_address: str) -> None:
        self.db.execute(
            delete(LoginAttemptRow)
            .where(LoginAttemptRow.ip_address == ip_address)
            .execution_options(synchronize_session=False)
        )
        self._commit()

    def purge_stale(self, *, now, before) -> int:
        result = self.db.execute(
            delete(LoginAttemptRow)
            .where(
                LoginAttemptRow.last_attempt_at < before,
                or_(LoginAttemptRow.blocked_until.is_(None), LoginAttemptRow.blocked_until <= now),
            )
            .execution_options(synchronize_session=False)
        )
        self._commit()
        return result.rowcount


class SqlRevocationStore(_SqlStore, RevocationStore):

    def add(self, record: RevokedToken) -> bool:
        if self.contains(record.token_fingerprint):
            return False
        self.db.add(RevokedTokenRow(
            token_fingerprint=record.token_fingerprint,
            user_id=record.user_id,
            reason=RevocationReason(record.reason).value,
            revoked_at=record.revoked_at,
            expires_at=record.expires_at,
        ))
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            return False
        self._commit()
        return True

    def contains(self, token_fingerprint: str) -> bool:
        return (
            self.db.query(RevokedTokenRow.id)
            .filter(RevokedTokenRow.token_fingerprint == token_fingerprint)
            .first()
        ) is not None

    def purge_expired(self, now: datetime) -> int:
        result = self.db.execute(
            delete(RevokedTokenRow)
            .where(RevokedTokenRow.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        self._commit()
        return result.rowcount


class SqlResetTokenStore(_SqlStore, ResetTokenStore):

    def replace_for_account(self, *, user_id, token_hash, expires_at, ip_address, now) -> ResetToken:
        with unit_of_work(self.db):
            self.db.execute(
                delete(ResetTokenRow)
                .where(ResetTokenRow.user_id == user_id, ResetTokenRow.used == False)  # noqa: E712
                .execution_options(synchronize_session=False)
            )
            row = ResetTokenRow(
                user_id=user_id,
                token_hash=token_hash,
                expires_at=expires_at,
                used=False,
                ip_address=ip_address,
                created_at=now,
            )
            self.db.add(row)
            self.db.flush()
        return _to_reset_token(row)

    def get_by_hash(self, token_hash: str) -> Optional[ResetToken]:
        row = (
            self.db.query(ResetTokenRow)
            .populate_existing()
            .filter(ResetTokenRow.token_hash == token_hash)
            .first()
        )
        return _to_reset_token(row) if row else None

    def mark_used(self, token_id: int, *, now: datetime) -> bool:
        result = self.db.execute(
            update(ResetTokenRow)
            .where(
                ResetTokenRow.id == token_id,
                ResetTokenRow.used == False,  # noqa: E712
                ResetTokenRow.expires_at > now,
            )
            .values(used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        self._commit()
        return result.rowcount == 1

    def purge(self, now: datetime) -> int:
        result = self.db.execute(
            delete(ResetTokenRow)
            .where(or_(ResetTokenRow.used == True, ResetTokenRow.expires_at <= now))  # noqa: E712
            .execution_options(synchronize_session=False)
        )
        self._commit()
        return result.rowcount


def sql_stores(db: Session) -> Stores:
    """Build the store set bound to one request session."""
    return Stores(
        accounts=SqlAccountStore(db),
        login_attempts=SqlLoginAttemptStore(db),
        revocations=SqlRevocationStore(db),
        reset_tokens=SqlResetTokenStore(db),
        transaction=lambda: unit_of_work(db),
    )
