"""
Tests for CSRF state generation and validation.
"""

import base64
import hashlib
import json

import pytest

from edge_auth import CSRFValidationError
from edge_auth import csrf

SECRET = "test-signing-secret"


def mutate(value: str) -> str:
    """Change the first character of a value."""
    first = "B" if value[0] != "B" else "C"
    return first + value[1:]


@pytest.fixture
def state():
    return csrf.generate("https://app.example.com/private", SECRET)


def test_generate_produces_distinct_values():
    first = csrf.generate("/", SECRET)
    second = csrf.generate("/", SECRET)

    assert first.nonce != second.nonce
    assert first.pkce != second.pkce
    assert 43 <= len(first.pkce) <= 128


def test_state_encodes_nonce_and_redirect_uri(state):
    padded = state.state + "=" * (-len(state.state) % 4)
    decoded = json.loads(base64.urlsafe_b64decode(padded))

    assert decoded["nonce"] == state.nonce
    assert decoded["redirect_uri"] == "https://app.example.com/private"
    assert "=" not in state.state
    assert "+" not in state.state and "/" not in state.state


def test_pkce_challenge_is_s256(state):
    digest = hashlib.sha256(state.pkce.encode()).digest()
    expected = base64.urlsafe_b64encode(digest).decode().rstrip("=")

    assert state.pkce_challenge == expected


def test_nonce_hmac_uses_secret(state):
    assert state.nonce_hmac == csrf.sign_nonce(state.nonce, SECRET)
    assert state.nonce_hmac != csrf.sign_nonce(state.nonce, "another-secret")


def test_round_trip(state):
    decoded = csrf.validate(state.state, state.nonce, state.nonce_hmac, state.pkce, SECRET)

    assert decoded["redirect_uri"] == "https://app.example.com/private"


def test_missing_nonce_cookie(state):
    with pytest.raises(CSRFValidationError) as exc_info:
        csrf.validate(state.state, None, state.nonce_hmac, state.pkce, SECRET)

    assert exc_info.value.code == CSRFValidationError.MISSING_NONCE_COOKIE


def test_mutated_nonce_cookie(state):
    with pytest.raises(CSRFValidationError) as exc_info:
        csrf.validate(state.state, mutate(state.nonce), state.nonce_hmac, state.pkce, SECRET)

    assert exc_info.value.code == CSRFValidationError.NONCE_MISMATCH


def test_tampered_state_nonce(state):
    tampered = csrf.encode_state(mutate(state.nonce), "https://evil.example.com")

    with pytest.raises(CSRFValidationError) as exc_info:
        csrf.validate(tampered, state.nonce, state.nonce_hmac, state.pkce, SECRET)

    assert exc_info.value.code == CSRFValidationError.NONCE_MISMATCH


def test_missing_pkce_cookie(state):
    with pytest.raises(CSRFValidationError) as exc_info:
        csrf.validate(state.state, state.nonce, state.nonce_hmac, None, SECRET)

    assert exc_info.value.code == CSRFValidationError.MISSING_PKCE_COOKIE


def test_mutated_pkce_cookie(state):
    with pytest.raises(CSRFValidationError) as exc_info:
        csrf.validate(state.state, state.nonce, state.nonce_hmac, mutate(state.pkce), SECRET)

    assert exc_info.value.code == CSRFValidationError.PKCE_MISMATCH


def test_mutated_nonce_hmac(state):
    with pytest.raises(CSRFValidationError) as exc_info:
        csrf.validate(state.state, state.nonce, mutate(state.nonce_hmac), state.pkce, SECRET)

    assert exc_info.value.code == CSRFValidationError.SIGNATURE_MISMATCH


def test_wrong_secret(state):
    with pytest.raises(CSRFValidationError) as exc_info:
        csrf.validate(state.state, state.nonce, state.nonce_hmac, state.pkce, "other-secret")

    assert exc_info.value.code == CSRFValidationError.SIGNATURE_MISMATCH


def test_signature_mismatch_message_does_not_leak_expected_hmac(state):
    with pytest.raises(CSRFValidationError) as exc_info:
        csrf.validate(state.state, state.nonce, "forged", state.pkce, SECRET)

    assert state.nonce_hmac not in str(exc_info.value)


@pytest.mark.parametrize("bad_state", [None, "", "%%%not-base64%%%", "bm90IGpzb24"])
def test_undecodable_state(state, bad_state):
    with pytest.raises(CSRFValidationError) as exc_info:
        csrf.validate(bad_state, state.nonce, state.nonce_hmac, state.pkce, SECRET)

    assert exc_info.value.code == CSRFValidationError.INVALID_STATE
