import pytest

from remit.services.validator import validate_payment_request
from remit.utils.idempotency import derive_idempotency_key, payload_hash, resolve_idempotency_key


@pytest.fixture
def hash_of(payment_payload):
    def _hash(**overrides) -> str:
        return payload_hash(validate_payment_request(payment_payload(**overrides)).unwrap())

    return _hash


def test_hash_ignores_formatting_differences(hash_of):
    assert hash_of() == hash_of(amount="1000", currency="usd", swift_code="abcdus33", reference=" Invoice 42 ")


def test_hash_changes_with_payment_fields(hash_of):
    base = hash_of()
    assert hash_of(amount="1000.01") != base
    assert hash_of(recipient_account="87654321") != base
    assert hash_of(reference=None) != base


def test_header_key_wins_over_nonce():
    assert resolve_idempotency_key(user_id="u1", header_key=" abc ", nonce="n1") == "abc"


def test_nonce_key_is_stable_and_user_scoped():
    first = resolve_idempotency_key(user_id="u1", header_key=None, nonce="n1")
    assert first == derive_idempotency_key("u1", "n1")
    assert first == resolve_idempotency_key(user_id="u1", header_key="  ", nonce="n1")
    assert first != resolve_idempotency_key(user_id="u2", header_key=None, nonce="n1")
    assert len(first) == 64


def test_no_key_without_header_or_nonce():
    assert resolve_idempotency_key(user_id="u1", header_key=None, nonce=None) is None
    assert resolve_idempotency_key(user_id="u1", header_key="", nonce="   ") is None
