"""
ID token verification capability.

The flow controller depends only on the ``TokenVerifier`` protocol, so any
object with an async ``verify(id_token) -> TokenClaims`` method can be used,
for example a stub in tests or a verifier backed by another JWT library.
"""

import logging
from typing import Protocol

from edge_auth.claims import TokenClaims
from edge_auth.config import AuthConfig
from edge_auth.errors import TokenVerificationError
from edge_auth.jwks import JWKSClient, JWKSError

logger = logging.getLogger(__name__)


class TokenVerifier(Protocol):
    """Protocol for ID token verifiers."""

    async def verify(self, id_token: str | None) -> TokenClaims:
        """
        Verify an ID token.

        Args:
            id_token: Raw JWT (None when the session has no id token)

        Returns:
            Verified claims

        Raises:
            TokenVerificationError: If the token is missing, invalid or expired
        """
        ...


class JWKSTokenVerifier:
    """
    TokenVerifier backed by the user pool's JWKS.

    Example:
        verifier = JWKSTokenVerifier(config)
        claims = await verifier.verify(id_token)
        print(claims.username)
    """

    def __init__(self, config: AuthConfig, client: JWKSClient | None = None) -> None:
        self.client = client or JWKSClient(config)

    async def verify(self, id_token: str | None) -> TokenClaims:
        if not id_token:
            raise TokenVerificationError("No id token to verify", code="token_missing")

        try:
            payload = await self.client.verify_token(id_token)
            claims = TokenClaims.from_payload(payload)
        except JWKSError as e:
            logger.info(f"Token verification failed: {e}")
            raise TokenVerificationError(str(e)) from e
        except ValueError as e:
            logger.warning(f"Token claims invalid: {e}")
            raise TokenVerificationError(str(e), code="claims_invalid") from e

        logger.debug(f"Token verified for user {claims.username}")
        return claims
