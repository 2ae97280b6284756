import threading

import pytest

from app.core.exceptions import ResetTokenInvalidError
from app.core.security import hash_token
from app.services.password_reset_service import PasswordResetService


def _broker(stores, clock):
    return PasswordResetService(stores.reset_tokens, clock=clock)


def test_issue_stores_only_the_hash(stores, clock):
    broker = _broker(stores, clock)
    secret, token = broker.issue_reset_token(1, "10.0.0.1")
    assert len(secret) == 64
    assert token.token_hash == hash_token(secret)
    assert token.token_hash != secret
    assert token.ip_address == "10.0.0.1"
    assert (token.expires_at - clock.now).total_seconds() == 900


def test_validate_returns_the_token(stores, clock):
    broker = _broker(stores, clock)
    secret, token = broker.issue_reset_token(1, "10.0.0.1")
    assert broker.validate_reset_token(secret).id == token.id


def test_unknown_secret_is_invalid(stores, clock):
    broker = _broker(stores, clock)
    with pytest.raises(ResetTokenInvalidError):
        broker.validate_reset_token("0" * 64)
    with pytest.raises(ResetTokenInvalidError):
        broker.validate_reset_token("")


def test_token_expires_after_fifteen_minutes(stores, clock):
    broker = _broker(stores, clock)
    secret, _ = broker.issue_reset_token(1, "10.0.0.1")
    clock.advance(minutes=14, seconds=59)
    broker.validate_reset_token(secret)
    clock.advance(seconds=1)
    with pytest.raises(ResetTokenInvalidError):
        broker.validate_reset_token(secret)


def test_new_token_invalidates_the_previous_one(stores, clock):
    broker = _broker(stores, clock)
    first, _ = broker.issue_reset_token(1, "10.0.0.1")
    second, _ = broker.issue_reset_token(1, "10.0.0.2")
    with pytest.raises(ResetTokenInvalidError):
        broker.validate_reset_token(first)
    broker.validate_reset_token(second)


def test_tokens_of_other_accounts_survive(stores, clock):
    broker = _broker(stores, clock)
    other, _ = broker.issue_reset_token(2, "10.0.0.1")
    broker.issue_reset_token(1, "10.0.0.1")
    broker.validate_reset_token(other)


def test_token_is_single_use(stores, clock):
    broker = _broker(stores, clock)
    secret, _ = broker.issue_reset_token(1, "10.0.0.1")
    token = broker.validate_reset_token(secret)
    broker.consume_reset_token(token)
    with pytest.raises(ResetTokenInvalidError):
        broker.validate_reset_token(secret)
    with pytest.raises(ResetTokenInvalidError):
        broker.consume_reset_token(token)


def test_concurrent_consumption_has_one_winner(stores, clock):
    broker = _broker(stores, clock)
    secret, _ = broker.issue_reset_token(1, "10.0.0.1")
    token = broker.validate_reset_token(secret)
    barrier = threading.Barrier(10)
    outcomes = []

    def consume():
        barrier.wait()
        try:
            broker.consume_reset_token(token)
            outcomes.append("ok")
        except ResetTokenInvalidError:
            outcomes.append("invalid")

    threads = [threading.Thread(target=consume) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("invalid") == 9
