"""Credential service - account creation, password checks and account lockout"""

from datetime import datetime, timedelta
from typing import Callable, Optional
import logging

from email_validator import EmailNotValidError, validate_email

from app.config import settings
from app.core.exceptions import ValidationError
from app.core.metrics import LOCKOUTS
from app.core.security import (
    burn_password_check,
    get_password_hash,
    validate_password_strength,
    verify_password,
)
from app.stores.base import AccountStore
from app.stores.records import Account
from app.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50
MIN_AGE = 13
MAX_AGE = 120


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


class CredentialService:
    """Owns account credentials and per-account lockout state"""

    def __init__(
        self,
        accounts: AccountStore,
        *,
        max_failed_attempts: Optional[int] = None,
        lockout_minutes: Optional[int] = None,
        hash_rounds: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.accounts = accounts
        self.max_failed_attempts = max_failed_attempts or settings.MAX_FAILED_LOGIN_ATTEMPTS
        self.lockout_duration = timedelta(minutes=lockout_minutes or settings.ACCOUNT_LOCKOUT_MINUTES)
        self.hash_rounds = hash_rounds or settings.BCRYPT_ROUNDS
        self.clock = clock

    @staticmethod
    def _clean_name(value: str, field: str) -> str:
        cleaned = (value or "").strip()
        if not NAME_MIN_LENGTH <= len(cleaned) <= NAME_MAX_LENGTH:
            raise ValidationError(
                f"{field} must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters",
                details={"field": field},
            )
        return cleaned

    def _validated_email(self, email: str) -> str:
        try:
            result = validate_email(normalize_email(email), check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValidationError("Invalid email address", details={"field": "email", "reason": str(exc)})
        return normalize_email(result.normalized)

    def check_password_policy(self, password: str) -> None:
        problems = validate_password_strength(password or "")
        if problems:
            raise ValidationError("Password does not meet requirements", details={"password": problems})

    def hash_password(self, password: str) -> str:
        """bcrypt hash at the configured work factor; PasswordHashingError on failure."""
        return get_password_hash(password, rounds=self.hash_rounds)

    def create_account(
        self,
        *,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        age: int,
    ) -> Account:
        """
        Create a new account

        Args:
            email: Login email, validated and lower-cased
            password: Plain text password, hashed before it reaches the store
            first_name: Given name(s)
            last_name: Family name(s)
            age: Age in whole years

        Returns:
            Created account

        Raises:
            ValidationError: Bad profile field or weak password
            DuplicateEmailError: Email already registered
        """
        normalized = self._validated_email(email)
        first = self._clean_name(first_name, "first_name")
        last = self._clean_name(last_name, "last_name")
        if isinstance(age, bool) or not isinstance(age, int) or not MIN_AGE <= age <= MAX_AGE:
            raise ValidationError(f"Age must be a whole number between {MIN_AGE} and {MAX_AGE}", details={"field": "age"})
        self.check_password_policy(password)

        account = self.accounts.create(
            email=normalized,
            first_name=first,
            last_name=last,
            age=age,
            password_hash=self.hash_password(password),
            now=self.clock(),
        )
        logger.info("Created account id=%s", account.id)
        return account

    def get_account(self, account_id: int) -> Optional[Account]:
        return self.accounts.get(account_id)

    def find_by_email(self, email: str) -> Optional[Account]:
        return self.accounts.get_by_email(normalize_email(email))

    def verify_password(self, account: Optional[Account], candidate: str) -> bool:
        """
        Check a candidate password

        When ``account`` is None a dummy hash is checked instead, so a missing
        account costs the same bcrypt work as a wrong password.
        """
        if account is None:
            burn_password_check(candidate or "", rounds=self.hash_rounds)
            return False
        return verify_password(candidate or "", account.password_hash)

    def is_locked(self, account: Account) -> bool:
        return account.is_locked(self.clock())

    def record_failed_auth(self, account: Account) -> Account:
        """Count a failed authentication; the 5th consecutive one locks the account."""
        now = self.clock()
        updated = self.accounts.increment_failed_attempts(
            account.id,
            now=now,
            threshold=self.max_failed_attempts,
            lock_until=now + self.lockout_duration,
        )
        if updated is None:
            return account

        if updated.locked_until is not None and updated.locked_until != account.locked_until:
            LOCKOUTS.labels("account").inc()
            logger.warning(
                "Account locked id=%s until=%s after %s failed attempts",
                updated.id,
                updated.locked_until.isoformat(),
                updated.failed_login_attempts,
            )
        return updated

    def record_successful_auth(self, account: Account) -> Account:
        updated = self.accounts.reset_failed_attempts(account.id, last_login=self.clock())
        return updated or account

    def apply_password_hash(self, account: Account, password_hash: str) -> Account:
        """Store an already computed hash and clear lockout state."""
        updated = self.accounts.set_password_hash(account.id, password_hash)
        logger.info("Password replaced for account id=%s", account.id)
        return updated or account

    def replace_password(self, account: Account, new_password: str) -> Account:
        self.check_password_policy(new_password)
        return self.apply_password_hash(account, self.hash_password(new_password))
