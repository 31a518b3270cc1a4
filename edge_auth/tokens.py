"""
Token endpoint client: authorization code and refresh token exchanges, revocation.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from edge_auth.config import AuthConfig
from edge_auth.errors import RevokeError, TokenExchangeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenSet:
    """
    Tokens for one user session.

    Attributes:
        id_token: ID token (required for a valid session)
        access_token: Access token
        refresh_token: Refresh token (absent after a refresh exchange)
    """

    id_token: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None

    def __repr__(self) -> str:
        # never render token material in logs or tracebacks
        return (
            f"TokenSet(id_token={'***' if self.id_token else None}, "
            f"access_token={'***' if self.access_token else None}, "
            f"refresh_token={'***' if self.refresh_token else None})"
        )


@dataclass
class TokenClient:
    """
    Client for the identity provider's token and revoke endpoints.

    Requests are form-encoded; when the config carries an app secret they are
    authenticated with HTTP Basic auth using appId:appSecret.

    Example:
        client = TokenClient(config)
        tokens = await client.exchange_code("https://example.com/parseauth", code)
    """

    config: AuthConfig

    @property
    def _auth(self) -> tuple[str, str] | None:
        if self.config.user_pool_app_secret:
            return (self.config.user_pool_app_id, self.config.user_pool_app_secret)
        return None

    async def _post(self, url: str, data: dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.config.http_timeout) as client:
            return await client.post(url, data=data, auth=self._auth)

    async def _request_tokens(self, data: dict[str, str], grant: str) -> dict[str, Any]:
        try:
            response = await self._post(self.config.token_endpoint, data)
        except httpx.HTTPError as e:
            logger.error(f"Token request ({grant}) failed: {e.__class__.__name__}")
            raise TokenExchangeError(
                f"HTTP error calling token endpoint: {e.__class__.__name__}"
            ) from e

        if response.status_code != 200:
            error = _provider_error(response)
            logger.error(f"Token request ({grant}) rejected: HTTP {response.status_code} {error}")
            raise TokenExchangeError(
                f"Token endpoint returned HTTP {response.status_code}"
                + (f" ({error})" if error else "")
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TokenExchangeError("Invalid token endpoint response: not JSON") from e

        if not isinstance(payload, dict) or not payload.get("id_token"):
            raise TokenExchangeError("Invalid token endpoint response: missing 'id_token'")

        logger.debug(f"Fetched tokens ({grant})")
        return payload

    async def exchange_code(
        self, redirect_uri: str, code: str, code_verifier: str | None = None
    ) -> TokenSet:
        """
        Exchange an authorization code for tokens.

        Args:
            redirect_uri: The redirect_uri sent on the authorize request
            code: Authorization code from the callback
            code_verifier: PKCE verifier matching the code_challenge, if one was sent

        Returns:
            TokenSet including the refresh token

        Raises:
            TokenExchangeError: If the request fails or is rejected
        """
        data = {
            "client_id": self.config.user_pool_app_id,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        logger.debug("Fetching tokens from grant code")
        payload = await self._request_tokens(data, "authorization_code")
        return TokenSet(
            id_token=payload["id_token"],
            access_token=payload.get("access_token"),
            refresh_token=payload.get("refresh_token"),
        )

    async def exchange_refresh_token(self, redirect_uri: str, refresh_token: str) -> TokenSet:
        """
        Get fresh id and access tokens from a refresh token.

        The returned TokenSet has no refresh token; the original one stays valid.

        Raises:
            TokenExchangeError: If the request fails or is rejected
        """
        data = {
            "client_id": self.config.user_pool_app_id,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
            "redirect_uri": redirect_uri,
        }

        logger.debug("Fetching tokens from refresh token")
        payload = await self._request_tokens(data, "refresh_token")
        return TokenSet(
            id_token=payload["id_token"],
            access_token=payload.get("access_token"),
        )

    async def revoke(self, refresh_token: str | None) -> None:
        """
        Revoke a refresh token (and the access tokens issued from it).

        Raises:
            RevokeError: If there is no token to revoke or the request fails
        """
        if not refresh_token:
            raise RevokeError("No refresh token to revoke")

        data = {"client_id": self.config.user_pool_app_id, "token": refresh_token}
        try:
            response = await self._post(self.config.revoke_endpoint, data)
        except httpx.HTTPError as e:
            logger.error(f"Unable to revoke refresh token: {e.__class__.__name__}")
            raise RevokeError(
                f"HTTP error calling revoke endpoint: {e.__class__.__name__}"
            ) from e

        if response.status_code != 200:
            error = _provider_error(response)
            logger.error(f"Unable to revoke refresh token: HTTP {response.status_code} {error}")
            raise RevokeError(
                f"Revoke endpoint returned HTTP {response.status_code}"
                + (f" ({error})" if error else "")
            )

        logger.debug("Revoked refresh token")


def _provider_error(response: httpx.Response) -> str:
    """OAuth error code from an error response, without echoing the body."""
    try:
        payload = response.json()
    except ValueError:
        return ""
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, str):
            return error
    return ""
