import threading

import pytest

from app.core.exceptions import DuplicateEmailError, ValidationError
from app.services.credential_service import CredentialService

from conftest import STRONG_PASSWORD, TEST_BCRYPT_ROUNDS


def _service(stores, clock):
    return CredentialService(stores.accounts, hash_rounds=TEST_BCRYPT_ROUNDS, clock=clock)


def _account(service, email="a@x.com"):
    return service.create_account(
        email=email,
        password=STRONG_PASSWORD,
        first_name="Ada",
        last_name="Lovelace",
        age=36,
    )


def test_create_account_hashes_password_and_normalizes_email(stores, clock):
    service = _service(stores, clock)
    account = service.create_account(
        email="  Ada@X.com ",
        password=STRONG_PASSWORD,
        first_name=" Ada ",
        last_name="Lovelace",
        age=36,
    )
    assert account.email == "ada@x.com"
    assert account.first_name == "Ada"
    assert account.password_hash != STRONG_PASSWORD
    assert service.verify_password(account, STRONG_PASSWORD)
    assert service.find_by_email("ADA@x.com").id == account.id


def test_duplicate_email_is_rejected_case_insensitively(stores, clock):
    service = _service(stores, clock)
    _account(service, "a@x.com")
    with pytest.raises(DuplicateEmailError):
        _account(service, "A@X.COM")


@pytest.mark.parametrize(
    "overrides",
    [
        {"email": "not-an-email"},
        {"password": "weakpass"},
        {"first_name": "A"},
        {"last_name": "L" * 51},
        {"age": 12},
        {"age": 121},
    ],
)
def test_create_account_validation(stores, clock, overrides):
    service = _service(stores, clock)
    fields = dict(email="a@x.com", password=STRONG_PASSWORD, first_name="Ada", last_name="Lovelace", age=36)
    fields.update(overrides)
    with pytest.raises(ValidationError):
        service.create_account(**fields)


def test_missing_account_never_verifies(stores, clock):
    service = _service(stores, clock)
    assert service.verify_password(None, STRONG_PASSWORD) is False


def test_four_failures_do_not_lock(stores, clock):
    service = _service(stores, clock)
    account = _account(service)
    for _ in range(4):
        account = service.record_failed_auth(account)
    assert account.failed_login_attempts == 4
    assert not service.is_locked(account)


def test_fifth_failure_locks_for_ten_minutes(stores, clock):
    service = _service(stores, clock)
    account = _account(service)
    for _ in range(5):
        account = service.record_failed_auth(account)

    lock_instant = clock.now
    assert service.is_locked(account)
    assert (account.locked_until - lock_instant).total_seconds() == 600

    clock.advance(minutes=9, seconds=59)
    assert service.is_locked(account)
    clock.advance(seconds=1)
    assert not service.is_locked(account)


def test_failures_while_locked_do_not_extend_the_lock(stores, clock):
    service = _service(stores, clock)
    account = _account(service)
    for _ in range(5):
        account = service.record_failed_auth(account)
    locked_until = account.locked_until

    clock.advance(minutes=5)
    account = service.record_failed_auth(account)
    assert account.locked_until == locked_until


def test_failure_after_lock_expiry_restarts_the_count(stores, clock):
    service = _service(stores, clock)
    account = _account(service)
    for _ in range(5):
        account = service.record_failed_auth(account)

    clock.advance(minutes=10)
    account = service.record_failed_auth(account)
    assert account.failed_login_attempts == 1
    assert account.locked_until is None


def test_success_clears_counters(stores, clock):
    service = _service(stores, clock)
    account = _account(service)
    for _ in range(5):
        account = service.record_failed_auth(account)

    account = service.record_successful_auth(account)
    assert account.failed_login_attempts == 0
    assert account.locked_until is None
    assert account.last_login == clock.now


def test_replace_password_clears_lockout(stores, clock):
    service = _service(stores, clock)
    account = _account(service)
    for _ in range(5):
        account = service.record_failed_auth(account)

    account = service.replace_password(account, "N3w!Password")
    assert not service.is_locked(account)
    assert account.failed_login_attempts == 0
    assert service.verify_password(account, "N3w!Password")
    assert not service.verify_password(account, STRONG_PASSWORD)


def test_concurrent_failures_are_all_counted(stores, clock):
    service = _service(stores, clock)
    account = _account(service)
    barrier = threading.Barrier(8)

    def fail():
        barrier.wait()
        for _ in range(5):
            service.record_failed_auth(account)

    threads = [threading.Thread(target=fail) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stored = service.get_account(account.id)
    assert stored.failed_login_attempts == 40
    assert service.is_locked(stored)
