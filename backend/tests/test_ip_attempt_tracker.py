import pytest

from app.core.exceptions import AddressBlockedError
from app.services.credential_service import CredentialService
from app.services.ip_attempt_tracker import IPAttemptTracker

from conftest import STRONG_PASSWORD, TEST_BCRYPT_ROUNDS


def _tracker(stores, clock):
    return IPAttemptTracker(stores.login_attempts, clock=clock)


def test_unknown_address_is_allowed(stores, clock):
    _tracker(stores, clock).check_allowed("10.0.0.1")


def test_fifth_failure_blocks_with_retry_after(stores, clock):
    tracker = _tracker(stores, clock)
    for _ in range(4):
        tracker.record_failure("10.0.0.1")
    tracker.check_allowed("10.0.0.1")

    tracker.record_failure("10.0.0.1")
    with pytest.raises(AddressBlockedError) as exc_info:
        tracker.check_allowed("10.0.0.1")
    assert exc_info.value.retry_after == 600
    assert exc_info.value.status_code == 429

    clock.advance(minutes=4)
    with pytest.raises(AddressBlockedError) as exc_info:
        tracker.check_allowed("10.0.0.1")
    assert exc_info.value.retry_after == 360


def test_block_expires_after_ten_minutes(stores, clock):
    tracker = _tracker(stores, clock)
    for _ in range(5):
        tracker.record_failure("10.0.0.1")
    clock.advance(minutes=10)
    tracker.check_allowed("10.0.0.1")

    tracker.record_failure("10.0.0.1")
    assert stores.login_attempts.get("10.0.0.1").failed_attempts == 1


def test_old_failures_fall_out_of_the_window(stores, clock):
    tracker = _tracker(stores, clock)
    for _ in range(4):
        tracker.record_failure("10.0.0.1")
    clock.advance(minutes=11)
    tracker.record_failure("10.0.0.1")
    tracker.check_allowed("10.0.0.1")
    assert stores.login_attempts.get("10.0.0.1").failed_attempts == 1


def test_failures_exactly_ten_minutes_old_still_count(stores, clock):
    tracker = _tracker(stores, clock)
    for _ in range(4):
        tracker.record_failure("10.0.0.1")
    clock.advance(minutes=10)
    tracker.record_failure("10.0.0.1")
    with pytest.raises(AddressBlockedError):
        tracker.check_allowed("10.0.0.1")


def test_addresses_are_tracked_separately(stores, clock):
    tracker = _tracker(stores, clock)
    for _ in range(5):
        tracker.record_failure("10.0.0.1")
    tracker.check_allowed("10.0.0.2")


def test_clear_removes_the_entry(stores, clock):
    tracker = _tracker(stores, clock)
    for _ in range(3):
        tracker.record_failure("10.0.0.1")
    tracker.clear("10.0.0.1")
    assert stores.login_attempts.get("10.0.0.1") is None


def test_address_block_and_account_lock_are_independent(stores, clock):
    tracker = _tracker(stores, clock)
    credentials = CredentialService(stores.accounts, hash_rounds=TEST_BCRYPT_ROUNDS, clock=clock)
    account = credentials.create_account(
        email="a@x.com", password=STRONG_PASSWORD, first_name="Ada", last_name="Lovelace", age=36
    )

    for _ in range(5):
        tracker.record_failure("10.0.0.1")
    assert not credentials.is_locked(credentials.get_account(account.id))

    for _ in range(5):
        account = credentials.record_failed_auth(account)
    assert credentials.is_locked(account)
    tracker.check_allowed("10.0.0.2")
