"""
edge-auth: cookie-based OAuth2 login at the edge for Cognito user pools.

This library provides:
- A flow controller for viewer requests (gate, sign-in, callback, refresh, sign-out)
- Client-side sessions in attribute-controlled cookies, no server-side store
- CSRF protection of the authorization-code callback (nonce, HMAC, PKCE)
- JWKS-based ID token verification with TTL caching
- FastAPI middleware, routes and dependencies

Quick start:
    from edge_auth import AuthConfig, Authenticator

    authenticator = Authenticator(AuthConfig(
        region="us-east-1",
        user_pool_id="us-east-1_abc123",
        user_pool_app_id="1example23456789",
        user_pool_domain="auth.example.com",
    ))

    async def viewer_request(event, context):
        result = await authenticator.handle(event)
        return result.to_event()
"""

from edge_auth.claims import TokenClaims
from edge_auth.config import (
    AuthConfig,
    CookieSettings,
    CookieSettingsOverrides,
    CSRFProtection,
    LogoutConfiguration,
)
from edge_auth.core import Authenticator, AuthState, Session, classify
from edge_auth.errors import (
    AuthenticationError,
    ConfigurationError,
    CookieMissingError,
    CSRFValidationError,
    MissingCodeError,
    RevokeError,
    TokenExchangeError,
    TokenMissingError,
    TokenVerificationError,
)
from edge_auth.events import EdgeRequest, EdgeResponse
from edge_auth.jwks import JWKSClient
from edge_auth.tokens import TokenClient, TokenSet
from edge_auth.verifier import JWKSTokenVerifier, TokenVerifier

__version__ = "0.1.0"

__all__ = [
    # Config
    "AuthConfig",
    "CookieSettings",
    "CookieSettingsOverrides",
    "CSRFProtection",
    "LogoutConfiguration",
    # Flows
    "Authenticator",
    "AuthState",
    "Session",
    "classify",
    # Events
    "EdgeRequest",
    "EdgeResponse",
    # Tokens
    "TokenClient",
    "TokenSet",
    "TokenClaims",
    # Verification
    "TokenVerifier",
    "JWKSTokenVerifier",
    "JWKSClient",
    # Errors
    "AuthenticationError",
    "ConfigurationError",
    "CookieMissingError",
    "CSRFValidationError",
    "MissingCodeError",
    "RevokeError",
    "TokenExchangeError",
    "TokenMissingError",
    "TokenVerificationError",
]
