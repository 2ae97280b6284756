"""Login orchestration - registration, login/logout, password reset and request guards"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional
import logging

from app.core.exceptions import (
    AccountLockedError,
    AddressBlockedError,
    AuthenticationError,
    InvalidCredentialsError,
    ResetTokenInvalidError,
    ValidationError,
)
from app.core.metrics import LOGIN_ATTEMPTS, PASSWORD_RESET_REQUESTS, RESET_EMAIL_FAILURES
from app.services.credential_service import CredentialService
from app.services.email_service import EmailService, redact_email
from app.services.ip_attempt_tracker import IPAttemptTracker
from app.services.password_reset_service import PasswordResetService
from app.services.token_service import TokenService
from app.stores.base import Stores
from app.stores.records import Account
from app.utils.datetime_utils import seconds_until, utc_now

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    access_token: str
    expires_in: int
    account: Account
    token_type: str = "bearer"


class AuthService:
    """
    Composes the credential, address, token and reset services into the
    authentication flows.

    All collaborators share one ``Stores`` set, so a service built around SQL
    stores bound to a request session works inside that request's
    transaction, and one built around memory stores is fully isolated.
    """

    def __init__(
        self,
        stores: Stores,
        *,
        email_service: Optional[EmailService] = None,
        clock: Callable[[], datetime] = utc_now,
        credentials: Optional[CredentialService] = None,
        ip_tracker: Optional[IPAttemptTracker] = None,
        tokens: Optional[TokenService] = None,
        resets: Optional[PasswordResetService] = None,
    ) -> None:
        self.stores = stores
        self.clock = clock
        self.email_service = email_service
        self.credentials = credentials or CredentialService(stores.accounts, clock=clock)
        self.ip_tracker = ip_tracker or IPAttemptTracker(stores.login_attempts, clock=clock)
        self.tokens = tokens or TokenService(stores.revocations, clock=clock)
        self.resets = resets or PasswordResetService(stores.reset_tokens, clock=clock)

    def _locked_error(self, account: Account) -> AccountLockedError:
        return AccountLockedError(
            locked_until=account.locked_until.isoformat(),
            retry_after=seconds_until(account.locked_until, self.clock()),
        )

    # Registration

    def register(
        self,
        *,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        age: int,
    ) -> Account:
        """
        Register a new account

        Raises:
            ValidationError: Invalid profile or weak password
            DuplicateEmailError: Email already registered
        """
        account = self.credentials.create_account(
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            age=age,
        )
        logger.info("Registered account id=%s", account.id)
        return account

    # Login / logout

    def login(self, email: str, password: str, source_address: str) -> LoginResult:
        """
        Authenticate with email and password

        The address check runs before any account lookup so its outcome never
        depends on whether the email is registered.

        Args:
            email: Login email
            password: Candidate password
            source_address: Caller's network address

        Returns:
            LoginResult with a fresh session token

        Raises:
            AddressBlockedError: Too many failures from this address
            AccountLockedError: Account is inside its lockout window
            InvalidCredentialsError: Unknown email, wrong password or inactive account
        """
        try:
            self.ip_tracker.check_allowed(source_address)
        except AddressBlockedError:
            LOGIN_ATTEMPTS.labels("address_blocked").inc()
            logger.warning("Login refused for blocked address %s", source_address)
            raise

        account = self.credentials.find_by_email(email)
        if account is not None and self.credentials.is_locked(account):
            LOGIN_ATTEMPTS.labels("account_locked").inc()
            raise self._locked_error(account)

        usable = account is not None and account.is_active
        if not self.credentials.verify_password(account if usable else None, password):
            self.ip_tracker.record_failure(source_address)
            if usable:
                account = self.credentials.record_failed_auth(account)
                if self.credentials.is_locked(account):
                    LOGIN_ATTEMPTS.labels("account_locked").inc()
                    raise self._locked_error(account)
            LOGIN_ATTEMPTS.labels("invalid_credentials").inc()
            logger.info("Failed login from %s", source_address)
            raise InvalidCredentialsError()

        with self.stores.transaction():
            account = self.credentials.record_successful_auth(account)
            self.ip_tracker.clear(source_address)

        token = self.tokens.issue(account)
        LOGIN_ATTEMPTS.labels("success").inc()
        logger.info("Login succeeded for account id=%s from %s", account.id, source_address)
        return LoginResult(
            access_token=token,
            expires_in=self.tokens.lifetime_seconds,
            account=account,
        )

    def logout(self, token: str) -> None:
        """
        Revoke a session token; calling it again with the same token is a no-op.

        Tokens whose signature does not verify are not recorded, since they
        could never authenticate anyway.
        """
        account_id = self.tokens.owner_of(token)
        if account_id is None:
            logger.info("Logout with unverifiable token ignored")
            return
        self.tokens.revoke(token, account_id)

    def authenticate_request(self, token: str) -> Dict[str, Any]:
        """
        Guard for protected operations

        Raises:
            TokenRevokedError, TokenExpiredError, TokenInvalidError
        """
        return self.tokens.validate(token)

    def current_account(self, token: str) -> Account:
        """Resolve the account behind a valid token."""
        claims = self.authenticate_request(token)
        account = self.credentials.get_account(int(claims["sub"]))
        if account is None or not account.is_active:
            raise AuthenticationError("User not found or disabled")
        return account

    # Password reset

    def request_password_reset(
        self,
        email: str,
        source_address: str,
        schedule: Optional[Callable[..., Any]] = None,
    ) -> None:
        """
        Issue and email a reset token when the email belongs to an active
        account. The caller answers identically either way.

        Args:
            email: Address the reset was requested for
            source_address: Caller's network address
            schedule: Defers email delivery, e.g. ``BackgroundTasks.add_task``;
                delivery is inline when omitted
        """
        account = self.credentials.find_by_email(email)
        if account is None or not account.is_active:
            PASSWORD_RESET_REQUESTS.labels("unknown_email").inc()
            logger.info("Password reset requested for unknown or inactive email from %s", source_address)
            return

        secret, _ = self.resets.issue_reset_token(account.id, source_address)
        PASSWORD_RESET_REQUESTS.labels("issued").inc()

        if schedule is not None:
            schedule(self._deliver_reset_email, account, secret)
        else:
            self._deliver_reset_email(account, secret)

    def _deliver_reset_email(self, account: Account, secret: str) -> None:
        sent = False
        if self.email_service is not None:
            try:
                sent = self.email_service.send_reset_email(account.email, secret, account.display_name)
            except Exception:
                logger.exception("Reset email to %s raised", redact_email(account.email))
        if not sent:
            RESET_EMAIL_FAILURES.inc()
            logger.warning(
                "Password reset email not delivered for account id=%s (%s)",
                account.id,
                redact_email(account.email),
            )

    def verify_reset_token(self, secret: str) -> Dict[str, Any]:
        """
        Read-only check of a reset secret

        Returns:
            Dict with the masked email and expiry of the token

        Raises:
            ResetTokenInvalidError: Unknown, expired or used token
        """
        token = self.resets.validate_reset_token(secret)
        account = self.credentials.get_account(token.user_id)
        if account is None:
            raise ResetTokenInvalidError()
        return {
            "valid": True,
            "email": redact_email(account.email),
            "expires_at": token.expires_at,
        }

    def confirm_password_reset(
        self,
        secret: str,
        new_password: str,
        confirm_password: Optional[str] = None,
    ) -> None:
        """
        Set a new password with a reset secret

        The token is claimed and the new hash stored in one transaction, so a
        failure leaves both untouched and only one concurrent request can win.

        Raises:
            ValidationError: Passwords differ or fail the password policy
            ResetTokenInvalidError: Unknown, expired or already used token
        """
        if confirm_password is not None and new_password != confirm_password:
            raise ValidationError("Passwords do not match", details={"field": "confirm_password"})

        token = self.resets.validate_reset_token(secret)
        account = self.credentials.get_account(token.user_id)
        if account is None:
            raise ResetTokenInvalidError()

        self.credentials.check_password_policy(new_password)
        password_hash = self.credentials.hash_password(new_password)

        with self.stores.transaction():
            self.resets.consume_reset_token(token)
            self.credentials.apply_password_hash(account, password_hash)

        PASSWORD_RESET_REQUESTS.labels("completed").inc()
        logger.info("Password reset completed for account id=%s", account.id)
