"""
Cookie parsing, serialization and attribute overrides.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from urllib.parse import unquote

from edge_auth.config import CookieSettings
from edge_auth.errors import CookieMissingError, TokenMissingError
from edge_auth.tokens import TokenSet

logger = logging.getLogger(__name__)

# Session cookie kinds, suffixed to "<base>.<username>."
ACCESS_TOKEN = "accessToken"
ID_TOKEN = "idToken"
REFRESH_TOKEN = "refreshToken"
TOKEN_SCOPES = "tokenScopesString"
LAST_AUTH_USER = "LastAuthUser"

# CSRF cookie kinds, suffixed to "<base>."
PKCE_COOKIE = "pkce"
NONCE_COOKIE = "nonce"
NONCE_HMAC_COOKIE = "nonceHmac"
CSRF_COOKIES = (PKCE_COOKIE, NONCE_COOKIE, NONCE_HMAC_COOKIE)

TOKEN_SCOPES_VALUE = "phone email profile openid aws.cognito.signin.user.admin"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class CookieAttributes:
    """Attributes rendered into a Set-Cookie header. Secure is always set."""

    domain: str | None = None
    path: str | None = None
    expires: datetime | None = None
    secure: bool = True
    http_only: bool = False
    same_site: str | None = None


def parse_cookie_header(value: str) -> list[tuple[str, str]]:
    """
    Parse a single Cookie header value into (name, value) pairs.

    Pairs without "=" or with an empty name are skipped. Values are
    percent-decoded; names are kept as sent (matched case-sensitively).

    Example:
        parse_cookie_header("a=1; b=hello%20world")
        # [("a", "1"), ("b", "hello world")]
    """
    pairs = []
    for chunk in value.split(";"):
        name, sep, raw = chunk.strip().partition("=")
        name = name.strip()
        if not sep or not name:
            continue
        raw = raw.strip()
        if len(raw) >= 2 and raw[0] == raw[-1] == '"':
            raw = raw[1:-1]
        pairs.append((name, unquote(raw)))
    return pairs


def parse_cookies(cookie_headers: Iterable[str]) -> list[tuple[str, str]]:
    """Flatten every Cookie header of a request into (name, value) pairs."""
    cookies: list[tuple[str, str]] = []
    for header in cookie_headers:
        cookies.extend(parse_cookie_header(header))
    return cookies


def serialize_cookie(name: str, value: str, attributes: CookieAttributes) -> str:
    """
    Render a Set-Cookie header value.

    Example:
        serialize_cookie("a", "1", CookieAttributes(path="/", same_site="Lax"))
        # "a=1; Path=/; Secure; SameSite=Lax"
    """
    parts = [f"{name}={value}"]
    if attributes.domain:
        parts.append(f"Domain={attributes.domain}")
    if attributes.path:
        parts.append(f"Path={attributes.path}")
    if attributes.expires is not None:
        parts.append(f"Expires={format_datetime(attributes.expires, usegmt=True)}")
    if attributes.secure:
        parts.append("Secure")
    if attributes.http_only:
        parts.append("HttpOnly")
    if attributes.same_site:
        parts.append(f"SameSite={attributes.same_site}")
    return "; ".join(parts)


def apply_overrides(
    base: CookieAttributes,
    override: CookieSettings | None,
    now: datetime | None = None,
) -> CookieAttributes:
    """
    Apply per-kind overrides to a base attribute set.

    Each override field that is set replaces the matching base field;
    expiration_days recomputes Expires from now. Unset fields keep the base value.
    """
    if override is None:
        return base

    changes: dict = {}
    if override.http_only is not None:
        changes["http_only"] = override.http_only
    if override.same_site is not None:
        changes["same_site"] = override.same_site
    if override.path is not None:
        changes["path"] = override.path
    if override.expiration_days is not None:
        now = now or datetime.now(timezone.utc)
        changes["expires"] = now + timedelta(days=override.expiration_days)

    logger.debug(f"Cookie attributes overridden: {sorted(changes)}")
    return replace(base, **changes)


def get_cookie_domain(
    host: str, disable_cookie_domain: bool, cookie_domain: str | None
) -> str | None:
    """Domain attribute for session cookies."""
    if disable_cookie_domain:
        return None
    if cookie_domain:
        return cookie_domain
    return host


def session_cookie_name(cookie_base: str, username: str, kind: str) -> str:
    return f"{cookie_base}.{username}.{kind}"


def extract_tokens(
    cookie_headers: list[str], cookie_base: str
) -> TokenSet:
    """
    Extract the session tokens from the request's Cookie headers.

    Args:
        cookie_headers: Raw Cookie header values
        cookie_base: Cookie name prefix ("CognitoIdentityServiceProvider.<appId>")

    Returns:
        TokenSet with whatever id/access/refresh tokens were found

    Raises:
        CookieMissingError: If the request has no Cookie header
        TokenMissingError: If neither an id token nor a refresh token is present
    """
    if not cookie_headers:
        raise CookieMissingError("Cookies weren't present in the request")

    prefix = f"{cookie_base}."
    id_token = access_token = refresh_token = None
    for name, value in parse_cookies(cookie_headers):
        if not name.startswith(prefix):
            continue
        if name.endswith(f".{ID_TOKEN}"):
            id_token = value
        elif name.endswith(f".{ACCESS_TOKEN}"):
            access_token = value
        elif name.endswith(f".{REFRESH_TOKEN}"):
            refresh_token = value

    if not id_token and not refresh_token:
        raise TokenMissingError(
            "Neither idToken, nor refreshToken was present in request cookies"
        )

    logger.debug(
        f"Found tokens in cookies (id_token={bool(id_token)}, refresh_token={bool(refresh_token)})"
    )
    return TokenSet(
        id_token=id_token or None,
        access_token=access_token or None,
        refresh_token=refresh_token or None,
    )


def extract_csrf_tokens(cookie_headers: list[str], cookie_base: str) -> dict[str, str]:
    """
    Extract the CSRF cookies ("pkce", "nonce", "nonceHmac") from the request.

    Missing cookies are simply absent from the returned dict.
    """
    tokens: dict[str, str] = {}
    for name, value in parse_cookies(cookie_headers):
        if not name.startswith(cookie_base):
            continue
        for kind in CSRF_COOKIES:
            if name == f"{cookie_base}.{kind}":
                tokens[kind] = value
    return tokens
