import threading

import pytest
from prometheus_client import REGISTRY

from app.core.exceptions import (
    AccountLockedError,
    AddressBlockedError,
    AuthenticationError,
    DuplicateEmailError,
    InvalidCredentialsError,
    ResetTokenInvalidError,
    TokenInvalidError,
    TokenRevokedError,
    ValidationError,
)

from conftest import STRONG_PASSWORD, RecordingEmailService, build_auth_service

NEW_PASSWORD = "N3w!Password"


def _register(auth_service, email="a@x.com"):
    return auth_service.register(
        email=email,
        password=STRONG_PASSWORD,
        first_name="Ada",
        last_name="Lovelace",
        age=36,
    )


def _email_failures():
    return REGISTRY.get_sample_value("taskcenter_reset_email_failures_total") or 0.0


def test_register_then_login(auth_service):
    account = _register(auth_service)
    result = auth_service.login("A@x.com", STRONG_PASSWORD, "10.0.0.1")
    assert result.account.id == account.id
    assert result.token_type == "bearer"
    assert result.expires_in == 7200
    assert auth_service.authenticate_request(result.access_token)["sub"] == str(account.id)


def test_register_duplicate_email(auth_service):
    _register(auth_service)
    with pytest.raises(DuplicateEmailError):
        _register(auth_service, "A@X.COM")


def test_lockout_scenario(auth_service, clock):
    _register(auth_service)
    for _ in range(4):
        with pytest.raises(InvalidCredentialsError):
            auth_service.login("a@x.com", "Wr0ng!Pass", "10.0.0.1")
    assert not auth_service.credentials.is_locked(auth_service.credentials.find_by_email("a@x.com"))

    with pytest.raises(AccountLockedError) as exc_info:
        auth_service.login("a@x.com", "Wr0ng!Pass", "10.0.0.1")
    assert exc_info.value.retry_after == 600

    # A fresh address, so only the account lock applies
    with pytest.raises(AccountLockedError):
        auth_service.login("a@x.com", STRONG_PASSWORD, "10.0.0.2")

    clock.advance(minutes=9, seconds=59)
    with pytest.raises(AccountLockedError):
        auth_service.login("a@x.com", STRONG_PASSWORD, "10.0.0.2")

    clock.advance(seconds=1)
    result = auth_service.login("a@x.com", STRONG_PASSWORD, "10.0.0.2")
    assert result.account.failed_login_attempts == 0
    assert result.account.locked_until is None


def test_sixth_attempt_from_the_same_address_is_blocked_first(auth_service):
    _register(auth_service)
    for _ in range(5):
        with pytest.raises((InvalidCredentialsError, AccountLockedError)):
            auth_service.login("a@x.com", "Wr0ng!Pass", "10.0.0.1")
    with pytest.raises(AddressBlockedError):
        auth_service.login("a@x.com", STRONG_PASSWORD, "10.0.0.1")


def test_address_block_covers_unknown_and_other_accounts(auth_service):
    _register(auth_service, "victim@x.com")
    for i in range(5):
        with pytest.raises(InvalidCredentialsError):
            auth_service.login(f"nobody{i}@x.com", "Wr0ng!Pass", "10.0.0.9")

    with pytest.raises(AddressBlockedError):
        auth_service.login("victim@x.com", STRONG_PASSWORD, "10.0.0.9")
    victim = auth_service.credentials.find_by_email("victim@x.com")
    assert victim.failed_login_attempts == 0

    auth_service.login("victim@x.com", STRONG_PASSWORD, "10.0.0.10")


def test_unknown_email_and_wrong_password_look_the_same(auth_service):
    _register(auth_service)
    with pytest.raises(InvalidCredentialsError) as unknown:
        auth_service.login("ghost@x.com", STRONG_PASSWORD, "10.0.0.1")
    with pytest.raises(InvalidCredentialsError) as wrong:
        auth_service.login("a@x.com", "Wr0ng!Pass", "10.0.0.2")
    assert unknown.value.message == wrong.value.message
    assert unknown.value.status_code == wrong.value.status_code == 401


def test_inactive_account_cannot_log_in(auth_service, stores):
    account = _register(auth_service)
    stores.accounts.backend.accounts[account.id].is_active = False
    with pytest.raises(InvalidCredentialsError):
        auth_service.login("a@x.com", STRONG_PASSWORD, "10.0.0.1")


def test_success_clears_address_and_account_counters(auth_service, stores):
    _register(auth_service)
    for _ in range(3):
        with pytest.raises(InvalidCredentialsError):
            auth_service.login("a@x.com", "Wr0ng!Pass", "10.0.0.1")

    result = auth_service.login("a@x.com", STRONG_PASSWORD, "10.0.0.1")
    assert result.account.failed_login_attempts == 0
    assert result.account.last_login is not None
    assert stores.login_attempts.get("10.0.0.1") is None


def test_logout_revokes_and_is_idempotent(auth_service):
    _register(auth_service)
    token = auth_service.login("a@x.com", STRONG_PASSWORD, "10.0.0.1").access_token

    auth_service.logout(token)
    auth_service.logout(token)
    with pytest.raises(TokenRevokedError):
        auth_service.authenticate_request(token)
    with pytest.raises(TokenRevokedError):
        auth_service.current_account(token)


def test_logout_ignores_garbage_tokens(auth_service, stores):
    auth_service.logout("not-a-token")
    assert stores.revocations.backend.revoked_tokens == {}
    with pytest.raises(TokenInvalidError):
        auth_service.authenticate_request("not-a-token")


def test_current_account_rejects_disabled_accounts(auth_service, stores):
    account = _register(auth_service)
    token = auth_service.login("a@x.com", STRONG_PASSWORD, "10.0.0.1").access_token
    assert auth_service.current_account(token).id == account.id

    stores.accounts.backend.accounts[account.id].is_active = False
    with pytest.raises(AuthenticationError):
        auth_service.current_account(token)


def test_reset_request_for_unknown_email_sends_nothing(auth_service, email_outbox):
    assert auth_service.request_password_reset("ghost@x.com", "10.0.0.1") is None
    assert email_outbox.sent == []


def test_reset_request_emails_a_working_secret(auth_service, email_outbox):
    _register(auth_service)
    assert auth_service.request_password_reset("a@x.com", "10.0.0.1") is None
    assert len(email_outbox.sent) == 1
    message = email_outbox.sent[0]
    assert message["to"] == "a@x.com"
    assert message["name"] == "Ada"

    status = auth_service.verify_reset_token(message["token"])
    assert status["valid"] is True
    assert status["email"] == "a***@x.com"


def test_scheduled_reset_email_is_sent_only_when_the_task_runs(auth_service, email_outbox):
    _register(auth_service)
    scheduled = []
    auth_service.request_password_reset("a@x.com", "10.0.0.1", schedule=lambda fn, *args: scheduled.append((fn, args)))
    auth_service.request_password_reset("ghost@x.com", "10.0.0.1", schedule=lambda fn, *args: scheduled.append((fn, args)))
    assert email_outbox.sent == []
    assert len(scheduled) == 1

    fn, args = scheduled[0]
    fn(*args)
    assert email_outbox.sent[0]["to"] == "a@x.com"


def test_undelivered_reset_email_is_counted(stores, clock):
    auth_service = build_auth_service(stores, clock, RecordingEmailService(succeed=False))
    _register(auth_service)
    before = _email_failures()
    auth_service.request_password_reset("a@x.com", "10.0.0.1")
    assert _email_failures() == before + 1


def test_reset_email_exception_is_contained(stores, clock):
    class ExplodingEmailService:
        def send_reset_email(self, to_email, token, display_name):
            raise RuntimeError("smtp down")

    auth_service = build_auth_service(stores, clock, ExplodingEmailService())
    _register(auth_service)
    before = _email_failures()
    auth_service.request_password_reset("a@x.com", "10.0.0.1")
    assert _email_failures() == before + 1


def test_second_reset_request_invalidates_the_first(auth_service, email_outbox):
    _register(auth_service)
    auth_service.request_password_reset("a@x.com", "10.0.0.1")
    auth_service.request_password_reset("a@x.com", "10.0.0.1")
    first, second = (m["token"] for m in email_outbox.sent)

    with pytest.raises(ResetTokenInvalidError):
        auth_service.verify_reset_token(first)
    auth_service.verify_reset_token(second)


def test_confirm_reset_replaces_password_and_clears_lockout(auth_service, email_outbox):
    _register(auth_service)
    for _ in range(5):
        with pytest.raises((InvalidCredentialsError, AccountLockedError)):
            auth_service.login("a@x.com", "Wr0ng!Pass", f"10.0.1.{_}")

    auth_service.request_password_reset("a@x.com", "10.0.0.1")
    secret = email_outbox.sent[0]["token"]
    auth_service.confirm_password_reset(secret, NEW_PASSWORD, NEW_PASSWORD)

    with pytest.raises(InvalidCredentialsError):
        auth_service.login("a@x.com", STRONG_PASSWORD, "10.0.0.3")
    auth_service.login("a@x.com", NEW_PASSWORD, "10.0.0.4")

    with pytest.raises(ResetTokenInvalidError):
        auth_service.confirm_password_reset(secret, "An0ther!Pass", "An0ther!Pass")


def test_confirm_reset_validation_leaves_token_usable(auth_service, email_outbox):
    _register(auth_service)
    auth_service.request_password_reset("a@x.com", "10.0.0.1")
    secret = email_outbox.sent[0]["token"]

    with pytest.raises(ValidationError):
        auth_service.confirm_password_reset(secret, NEW_PASSWORD, "Different!1")
    with pytest.raises(ValidationError):
        auth_service.confirm_password_reset(secret, "weakpass", "weakpass")
    auth_service.verify_reset_token(secret)


def test_expired_reset_secret_is_rejected(auth_service, email_outbox, clock):
    _register(auth_service)
    auth_service.request_password_reset("a@x.com", "10.0.0.1")
    secret = email_outbox.sent[0]["token"]
    clock.advance(minutes=15)
    with pytest.raises(ResetTokenInvalidError):
        auth_service.confirm_password_reset(secret, NEW_PASSWORD, NEW_PASSWORD)


def test_failed_password_write_does_not_consume_the_token(auth_service, email_outbox, monkeypatch):
    _register(auth_service)
    auth_service.request_password_reset("a@x.com", "10.0.0.1")
    secret = email_outbox.sent[0]["token"]

    def broken_write(account, password_hash):
        raise RuntimeError("write failed")

    monkeypatch.setattr(auth_service.credentials, "apply_password_hash", broken_write)
    with pytest.raises(RuntimeError):
        auth_service.confirm_password_reset(secret, NEW_PASSWORD, NEW_PASSWORD)

    monkeypatch.undo()
    auth_service.verify_reset_token(secret)
    auth_service.login("a@x.com", STRONG_PASSWORD, "10.0.0.1")


def test_concurrent_confirms_have_exactly_one_winner(auth_service, email_outbox):
    _register(auth_service)
    auth_service.request_password_reset("a@x.com", "10.0.0.1")
    secret = email_outbox.sent[0]["token"]
    barrier = threading.Barrier(2)
    outcomes = []

    def confirm(password):
        barrier.wait()
        try:
            auth_service.confirm_password_reset(secret, password, password)
            outcomes.append(("ok", password))
        except ResetTokenInvalidError:
            outcomes.append(("invalid", password))

    threads = [
        threading.Thread(target=confirm, args=("Fir5t!Pass",)),
        threading.Thread(target=confirm, args=("Sec0nd!Pass",)),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(kind for kind, _ in outcomes) == ["invalid", "ok"]
    winner = next(password for kind, password in outcomes if kind == "ok")
    auth_service.login("a@x.com", winner, "10.0.0.2")
