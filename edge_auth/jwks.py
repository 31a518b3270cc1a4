"""
User pool signing keys: fetch, cache by kid, and verify ID tokens against them.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from jose import JWTError, jwt

from edge_auth.config import AuthConfig

logger = logging.getLogger(__name__)

ALGORITHMS = ["RS256"]


class JWKSError(Exception):
    """Error fetching the user pool keys or verifying a token against them."""


@dataclass
class CachedKeys:
    """Signing keys by kid, valid until ``expires_at``."""

    by_kid: dict[str, dict[str, Any]]
    expires_at: float


@dataclass
class JWKSClient:
    """
    Verifies user pool ID tokens against the pool's published JWKS.

    Keys are cached for ``jwks_cache_ttl_seconds``. A token signed with a kid
    that is not cached triggers one refetch, which picks up rotated keys.
    Concurrent refetches are serialized so a rotation costs a single request.

    Example:
        client = JWKSClient(config)
        payload = await client.verify_token(id_token)
    """

    config: AuthConfig
    _cache: CachedKeys | None = field(default=None, init=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    async def _fetch_keys(self) -> dict[str, dict[str, Any]]:
        url = self.config.jwks_url
        try:
            async with httpx.AsyncClient(timeout=self.config.http_timeout) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise JWKSError(f"HTTP error fetching JWKS: {e.__class__.__name__}") from e

        if response.status_code != 200:
            raise JWKSError(f"Failed to fetch JWKS: HTTP {response.status_code} from {url}")

        try:
            keys = response.json()["keys"]
        except (ValueError, KeyError, TypeError) as e:
            raise JWKSError("Invalid JWKS response: expected an object with 'keys'") from e

        # keys without a kid can never match a user pool token
        by_kid = {key["kid"]: key for key in keys if isinstance(key, dict) and key.get("kid")}
        logger.debug(f"Fetched JWKS with {len(by_kid)} keys")
        return by_kid

    async def _keys(self, stale: CachedKeys | None = None) -> dict[str, dict[str, Any]]:
        """
        Cached keys, refetched when expired or when the cache is still ``stale``.
        """
        cache = self._cache
        if cache is not None and cache is not stale and time.time() < cache.expires_at:
            return cache.by_kid

        async with self._lock:
            # another task may have refetched while we waited
            cache = self._cache
            if cache is not None and cache is not stale and time.time() < cache.expires_at:
                return cache.by_kid

            by_kid = await self._fetch_keys()
            ttl = self.config.jwks_cache_ttl_seconds
            self._cache = CachedKeys(by_kid=by_kid, expires_at=time.time() + ttl)
            logger.info(f"JWKS cache updated, expires in {ttl}s")
            return by_kid

    async def get_signing_key(self, token: str) -> dict[str, Any]:
        """
        Get the JWK that signed ``token``, refetching the JWKS once on an unknown kid.

        Raises:
            JWKSError: If the header is unreadable, has no kid, or no key matches
        """
        try:
            kid = jwt.get_unverified_header(token).get("kid")
        except JWTError as e:
            raise JWKSError(f"Invalid token header: {e}") from e
        if not kid:
            raise JWKSError("Token header has no kid")

        keys = await self._keys()
        if kid not in keys:
            logger.info(f"Key {kid} not in cache, refreshing JWKS")
            keys = await self._keys(stale=self._cache)
        if kid not in keys:
            raise JWKSError(f"Key not found for kid: {kid}")
        return keys[kid]

    async def verify_token(self, token: str) -> dict[str, Any]:
        """
        Verify an ID token's signature, expiry, audience, issuer and token_use.

        Returns:
            Decoded payload

        Raises:
            JWKSError: If token verification fails
        """
        signing_key = await self.get_signing_key(token)

        try:
            payload = jwt.decode(
                token,
                signing_key,
                algorithms=ALGORITHMS,
                audience=self.config.user_pool_app_id,
                issuer=self.config.issuer,
                # at_hash needs the access token, which is verified separately if at all
                options={"verify_at_hash": False},
            )
        except JWTError as e:
            raise JWKSError(f"Token verification failed: {e}") from e

        if payload.get("token_use") != "id":
            raise JWKSError(f"Token use '{payload.get('token_use')}' is not 'id'")

        return payload

    def clear_cache(self) -> None:
        """Drop the cached keys; the next verification refetches them."""
        self._cache = None
        logger.debug("JWKS cache cleared")

    @property
    def cache_valid(self) -> bool:
        return self._cache is not None and time.time() < self._cache.expires_at
