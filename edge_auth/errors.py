"""
Exception hierarchy for the authentication flows.

Every failure carries a ``code`` tag so callers can branch on the kind of
failure without matching on message text.
"""


class ConfigurationError(ValueError):
    """Invalid gateway configuration. Raised at construction time only."""


class AuthenticationError(Exception):
    """
    Base class for request-scoped authentication failures.

    Attributes:
        message: Human-readable error message (safe to show to a client)
        code: Error code for programmatic handling
    """

    default_code = "auth_failed"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class TokenMissingError(AuthenticationError):
    """No session token cookies were found in the request."""

    default_code = "token_missing"


class CookieMissingError(TokenMissingError):
    """The request carried no Cookie header at all."""

    default_code = "cookie_missing"


class TokenVerificationError(AuthenticationError):
    """ID token signature or claims are invalid (or the token expired)."""

    default_code = "token_invalid"


class CSRFValidationError(AuthenticationError):
    """The callback's state and CSRF cookies do not match."""

    MISSING_NONCE_COOKIE = "missing_nonce_cookie"
    NONCE_MISMATCH = "nonce_mismatch"
    MISSING_PKCE_COOKIE = "missing_pkce_cookie"
    PKCE_MISMATCH = "pkce_mismatch"
    SIGNATURE_MISMATCH = "signature_mismatch"
    INVALID_STATE = "invalid_state"

    default_code = "csrf_invalid"


class MissingCodeError(AuthenticationError):
    """The callback request has no ``code`` query parameter."""

    default_code = "missing_code"


class TokenExchangeError(AuthenticationError):
    """Exchanging a code or refresh token at the token endpoint failed."""

    default_code = "exchange_failed"


class RevokeError(AuthenticationError):
    """Revoking a refresh token failed."""

    default_code = "revoke_failed"
