"""
CSRF protection for the authorization-code flow.

The browser that starts a login receives three short-lived cookies: a random
nonce, an HMAC of that nonce under the configured signing secret, and a PKCE
code verifier. The same nonce travels through the identity provider inside the
OAuth ``state`` parameter. On the callback, ``validate`` checks that the nonce
in ``state`` matches the nonce cookie, that the PKCE cookie hashes to the
challenge carried in ``state``, and that the cookie HMAC matches a fresh HMAC
of that nonce. Only then may the authorization code be exchanged.

The PKCE verifier binds the authorization code to this browser: its S256
challenge is sent on the authorize redirect and the verifier on the exchange
(RFC 7636).
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any

from edge_auth.errors import CSRFValidationError

logger = logging.getLogger(__name__)

NONCE_BYTES = 32
PKCE_VERIFIER_BYTES = 64


@dataclass(frozen=True)
class CSRFState:
    """
    Values produced for one authorization attempt.

    Attributes:
        nonce: Random value, stored in a cookie and embedded in state
        nonce_hmac: HMAC-SHA256 of the nonce under the signing secret
        pkce: PKCE code verifier (stored in a cookie)
        pkce_challenge: S256 challenge sent to the identity provider
        state: OAuth state parameter (URL-safe base64 of
            {nonce, redirect_uri, pkce_challenge})
    """

    nonce: str
    nonce_hmac: str
    pkce: str
    pkce_challenge: str
    state: str


def urlsafe_b64encode(data: bytes) -> str:
    """Base64url without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def urlsafe_b64decode(value: str) -> bytes:
    """Decode base64url, tolerating missing padding."""
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def sign_nonce(nonce: str, secret: str) -> str:
    """HMAC-SHA256 of the nonce, base64url encoded."""
    digest = hmac.new(secret.encode("utf-8"), nonce.encode("utf-8"), hashlib.sha256).digest()
    return urlsafe_b64encode(digest)


def pkce_challenge(verifier: str) -> str:
    """S256 code challenge: BASE64URL(SHA256(verifier))."""
    return urlsafe_b64encode(hashlib.sha256(verifier.encode("utf-8")).digest())


def encode_state(nonce: str, redirect_uri: str, challenge: str | None = None) -> str:
    state: dict[str, str] = {"nonce": nonce, "redirect_uri": redirect_uri}
    if challenge:
        state["pkce_challenge"] = challenge
    payload = json.dumps(state, separators=(",", ":"))
    return urlsafe_b64encode(payload.encode("utf-8"))


def decode_state(state: str | None) -> dict[str, Any]:
    """
    Decode the OAuth state parameter produced by ``generate``.

    Raises:
        CSRFValidationError: If state is missing or is not base64url JSON object
    """
    if not state:
        raise CSRFValidationError(
            "Missing state parameter", code=CSRFValidationError.INVALID_STATE
        )
    try:
        decoded = json.loads(urlsafe_b64decode(state).decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise CSRFValidationError(
            "Unable to decode state parameter", code=CSRFValidationError.INVALID_STATE
        ) from e
    if not isinstance(decoded, dict):
        raise CSRFValidationError(
            "Unable to decode state parameter", code=CSRFValidationError.INVALID_STATE
        )
    return decoded


def generate(redirect_uri: str, secret: str) -> CSRFState:
    """
    Generate the nonce, its HMAC, a PKCE verifier and the state parameter.

    Args:
        redirect_uri: Where to send the user after a successful login
        secret: Nonce signing secret

    Returns:
        CSRFState for one authorization attempt
    """
    nonce = secrets.token_urlsafe(NONCE_BYTES)
    verifier = secrets.token_urlsafe(PKCE_VERIFIER_BYTES)
    challenge = pkce_challenge(verifier)
    return CSRFState(
        nonce=nonce,
        nonce_hmac=sign_nonce(nonce, secret),
        pkce=verifier,
        pkce_challenge=challenge,
        state=encode_state(nonce, redirect_uri, challenge),
    )


def validate(
    state: str | None,
    cookie_nonce: str | None,
    cookie_nonce_hmac: str | None,
    cookie_pkce: str | None,
    secret: str,
) -> dict[str, Any]:
    """
    Validate a callback's state against the CSRF cookies.

    Checks run in this order: nonce cookie present, nonce matches state,
    PKCE cookie present, PKCE verifier matches the challenge in state, nonce
    HMAC matches.

    Args:
        state: The callback's state query parameter
        cookie_nonce: Value of the nonce cookie
        cookie_nonce_hmac: Value of the nonceHmac cookie
        cookie_pkce: Value of the pkce cookie
        secret: Nonce signing secret

    Returns:
        The decoded state ({"nonce": ..., "redirect_uri": ...})

    Raises:
        CSRFValidationError: With code missing_nonce_cookie, nonce_mismatch,
            missing_pkce_cookie, pkce_mismatch, signature_mismatch or invalid_state
    """
    parsed = decode_state(state)
    state_nonce = parsed.get("nonce")

    if not cookie_nonce:
        raise CSRFValidationError(
            "Your browser didn't send the nonce cookie along, but it is required "
            "for security (prevent CSRF).",
            code=CSRFValidationError.MISSING_NONCE_COOKIE,
        )
    if not isinstance(state_nonce, str) or not hmac.compare_digest(
        state_nonce.encode("utf-8"), cookie_nonce.encode("utf-8")
    ):
        raise CSRFValidationError(
            "Nonce mismatch. This can happen if you start multiple authentication "
            "attempts in parallel (e.g. in separate tabs)",
            code=CSRFValidationError.NONCE_MISMATCH,
        )
    if not cookie_pkce:
        raise CSRFValidationError(
            "Your browser didn't send the pkce cookie along, but it is required "
            "for security (prevent CSRF).",
            code=CSRFValidationError.MISSING_PKCE_COOKIE,
        )
    state_challenge = parsed.get("pkce_challenge")
    if not isinstance(state_challenge, str) or not hmac.compare_digest(
        pkce_challenge(cookie_pkce).encode("ascii"), state_challenge.encode("utf-8")
    ):
        raise CSRFValidationError(
            "PKCE verifier does not match the state's code challenge",
            code=CSRFValidationError.PKCE_MISMATCH,
        )

    expected = sign_nonce(state_nonce, secret)
    if not cookie_nonce_hmac or not hmac.compare_digest(
        expected.encode("ascii"), cookie_nonce_hmac.encode("utf-8")
    ):
        raise CSRFValidationError(
            "Nonce signature mismatch", code=CSRFValidationError.SIGNATURE_MISMATCH
        )

    logger.debug("CSRF cookies validated")
    return parsed
