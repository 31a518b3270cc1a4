"""
Gateway configuration.
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from edge_auth.errors import ConfigurationError

SAME_SITE_VALUES = ("Strict", "Lax", "None")

COOKIE_KINDS = ("accessToken", "idToken", "refreshToken")

_LOGOUT_URI_PATTERN = re.compile(r"/\w+")

# Accepts the level names used by edge deployments as well as the stdlib ones
LOG_LEVELS = {
    "silent": logging.CRITICAL + 10,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}


@dataclass(frozen=True)
class CookieSettings:
    """
    Attribute overrides for a single cookie kind.

    Fields left as None keep the value derived from the main configuration.
    """

    http_only: bool | None = None
    same_site: str | None = None
    path: str | None = None
    expiration_days: int | None = None

    def __post_init__(self) -> None:
        if self.same_site is not None and self.same_site not in SAME_SITE_VALUES:
            raise ConfigurationError(
                f"Cookie override same_site must be one of {SAME_SITE_VALUES}"
            )
        if self.expiration_days is not None and self.expiration_days <= 0:
            raise ConfigurationError("Cookie override expiration_days must be positive")


@dataclass(frozen=True)
class CookieSettingsOverrides:
    """Per-kind cookie overrides for the session token cookies."""

    access_token: CookieSettings | None = None
    id_token: CookieSettings | None = None
    refresh_token: CookieSettings | None = None

    def for_kind(self, kind: str) -> CookieSettings | None:
        """Get the override for a cookie kind ("accessToken", "idToken", "refreshToken")."""
        if kind == "accessToken":
            return self.access_token
        if kind == "idToken":
            return self.id_token
        if kind == "refreshToken":
            return self.refresh_token
        return None


@dataclass(frozen=True)
class CSRFProtection:
    """CSRF protection settings for the authorization-code flow."""

    nonce_signing_secret: str

    def __post_init__(self) -> None:
        if not self.nonce_signing_secret:
            raise ConfigurationError("csrf_protection.nonce_signing_secret is required")


@dataclass(frozen=True)
class LogoutConfiguration:
    """Logout path handled by the default gate, and where to send users afterwards."""

    logout_uri: str
    logout_redirect_uri: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.logout_uri, str) or not _LOGOUT_URI_PATTERN.search(
            self.logout_uri
        ):
            raise ConfigurationError(
                'logout_uri must be a valid non-empty string starting with "/"'
            )


@dataclass(frozen=True)
class AuthConfig:
    """
    Configuration for the edge authentication gateway.

    Attributes:
        region: AWS region of the user pool (e.g., "us-east-1")
        user_pool_id: Cognito user pool id
        user_pool_app_id: App client id registered in the pool
        user_pool_domain: Hosted UI domain (e.g., "auth.example.com")
        user_pool_app_secret: App client secret, sent as HTTP Basic auth when set
        cookie_expiration_days: Lifetime of session cookies (default: 365)
        disable_cookie_domain: Omit the Domain attribute on session cookies
        cookie_domain: Domain attribute to use instead of the request host
        http_only: Set HttpOnly on cookies (default: False)
        same_site: SameSite attribute (Strict, Lax or None)
        cookie_path: Path attribute on cookies
        cookie_settings_overrides: Per-kind attribute overrides
        csrf_protection: Enables nonce/HMAC/PKCE protection of the callback
        logout_configuration: Logout path handled by the default gate
        parse_auth_path: Callback path the identity provider redirects to
        log_level: Level applied to the "edge_auth" logger, if set
        http_timeout: Timeout for identity provider requests (default: 10.0 seconds)
        jwks_cache_ttl_seconds: How long to cache JWKS (default: 300 = 5 minutes)

    Example:
        config = AuthConfig(
            region="us-east-1",
            user_pool_id="us-east-1_abc123",
            user_pool_app_id="1example23456789",
            user_pool_domain="auth.example.com",
            csrf_protection=CSRFProtection(nonce_signing_secret="change-me"),
            parse_auth_path="/parseauth",
        )
    """

    region: str
    user_pool_id: str
    user_pool_app_id: str
    user_pool_domain: str
    user_pool_app_secret: str | None = None
    cookie_expiration_days: int = 365
    disable_cookie_domain: bool = False
    cookie_domain: str | None = None
    http_only: bool = False
    same_site: str | None = None
    cookie_path: str | None = None
    cookie_settings_overrides: CookieSettingsOverrides = field(
        default_factory=CookieSettingsOverrides
    )
    csrf_protection: CSRFProtection | None = None
    logout_configuration: LogoutConfiguration | None = None
    parse_auth_path: str | None = None
    log_level: str | None = None
    http_timeout: float = 10.0
    jwks_cache_ttl_seconds: int = 300

    def __post_init__(self) -> None:
        """Validate configuration."""
        for name in ("region", "user_pool_id", "user_pool_app_id", "user_pool_domain"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ConfigurationError(f"{name} is required and must be a string")
        if self.cookie_expiration_days <= 0:
            raise ConfigurationError("cookie_expiration_days must be positive")
        if self.same_site is not None and self.same_site not in SAME_SITE_VALUES:
            raise ConfigurationError(f"same_site must be one of {SAME_SITE_VALUES}")
        if self.http_timeout <= 0:
            raise ConfigurationError("http_timeout must be positive")
        if self.jwks_cache_ttl_seconds < 0:
            raise ConfigurationError("jwks_cache_ttl_seconds must be non-negative")
        if self.log_level is not None and self.log_level.lower() not in LOG_LEVELS:
            raise ConfigurationError(f"log_level must be one of {sorted(LOG_LEVELS)}")
        if self.parse_auth_path:
            # frozen: normalize through object.__setattr__
            object.__setattr__(self, "parse_auth_path", self.parse_auth_path.lstrip("/"))

    @property
    def cookie_base(self) -> str:
        """Prefix shared by every cookie this gateway sets."""
        return f"CognitoIdentityServiceProvider.{self.user_pool_app_id}"

    @property
    def issuer(self) -> str:
        return f"https://cognito-idp.{self.region}.amazonaws.com/{self.user_pool_id}"

    @property
    def jwks_url(self) -> str:
        return f"{self.issuer}/.well-known/jwks.json"

    @property
    def token_endpoint(self) -> str:
        return f"https://{self.user_pool_domain}/oauth2/token"

    @property
    def revoke_endpoint(self) -> str:
        return f"https://{self.user_pool_domain}/oauth2/revoke"

    @property
    def authorize_endpoint(self) -> str:
        return f"https://{self.user_pool_domain}/authorize"

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "AuthConfig":
        """
        Build a config from the camelCase option names used by edge deployments.

        Args:
            options: Mapping such as {"region": ..., "userPoolId": ..., "csrfProtection": {...}}

        Returns:
            AuthConfig instance

        Raises:
            ConfigurationError: If an option has the wrong type or value

        Example:
            config = AuthConfig.from_options({
                "region": "us-east-1",
                "userPoolId": "us-east-1_abc123",
                "userPoolAppId": "1example23456789",
                "userPoolDomain": "auth.example.com",
                "sameSite": "Lax",
                "logoutConfiguration": {"logoutUri": "/logout"},
            })
        """
        if not isinstance(options, Mapping):
            raise ConfigurationError("Expected options to be a mapping")

        for name in ("region", "userPoolId", "userPoolAppId", "userPoolDomain"):
            _expect_type(options, name, str, required=True)
        _expect_type(options, "userPoolAppSecret", str)
        _expect_type(options, "cookieExpirationDays", int)
        _expect_type(options, "disableCookieDomain", bool)
        _expect_type(options, "cookieDomain", str)
        _expect_type(options, "httpOnly", bool)
        _expect_type(options, "cookiePath", str)
        _expect_type(options, "parseAuthPath", str)
        _expect_type(options, "logLevel", str)

        overrides = options.get("cookieSettingsOverrides") or {}
        if not isinstance(overrides, Mapping):
            raise ConfigurationError("Expected cookieSettingsOverrides to be a mapping")
        unknown = set(overrides) - set(COOKIE_KINDS)
        if unknown:
            raise ConfigurationError(
                f"Unknown cookieSettingsOverrides keys: {sorted(unknown)}"
            )

        csrf = options.get("csrfProtection")
        if csrf is not None and not isinstance(csrf, Mapping):
            raise ConfigurationError("Expected csrfProtection to be a mapping")
        logout = options.get("logoutConfiguration")
        if logout is not None and not isinstance(logout, Mapping):
            raise ConfigurationError("Expected logoutConfiguration to be a mapping")
        same_site = options.get("sameSite")
        if same_site is not None and same_site not in SAME_SITE_VALUES:
            raise ConfigurationError("Expected sameSite to be a Strict || Lax || None")

        return cls(
            region=options["region"],
            user_pool_id=options["userPoolId"],
            user_pool_app_id=options["userPoolAppId"],
            user_pool_domain=options["userPoolDomain"],
            user_pool_app_secret=options.get("userPoolAppSecret"),
            cookie_expiration_days=options.get("cookieExpirationDays") or 365,
            disable_cookie_domain=options.get("disableCookieDomain", False),
            cookie_domain=options.get("cookieDomain"),
            http_only=options.get("httpOnly", False),
            same_site=options.get("sameSite"),
            cookie_path=options.get("cookiePath"),
            cookie_settings_overrides=CookieSettingsOverrides(
                access_token=_cookie_settings(overrides.get("accessToken")),
                id_token=_cookie_settings(overrides.get("idToken")),
                refresh_token=_cookie_settings(overrides.get("refreshToken")),
            ),
            csrf_protection=(
                CSRFProtection(nonce_signing_secret=csrf.get("nonceSigningSecret", ""))
                if csrf is not None
                else None
            ),
            logout_configuration=(
                LogoutConfiguration(
                    logout_uri=logout.get("logoutUri", ""),
                    logout_redirect_uri=logout.get("logoutRedirectUri"),
                )
                if logout is not None
                else None
            ),
            parse_auth_path=options.get("parseAuthPath"),
            log_level=options.get("logLevel"),
        )


def _expect_type(
    options: Mapping[str, Any], name: str, expected: type, required: bool = False
) -> None:
    if name not in options or options[name] is None:
        if required:
            raise ConfigurationError(f"Expected {name} to be a {expected.__name__}")
        return
    value = options[name]
    # bool is an int subclass
    if expected is int and isinstance(value, bool):
        raise ConfigurationError(f"Expected {name} to be a number")
    if not isinstance(value, expected):
        raise ConfigurationError(f"Expected {name} to be a {expected.__name__}")


def _cookie_settings(raw: Mapping[str, Any] | None) -> CookieSettings | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ConfigurationError("Expected cookie override to be a mapping")
    return CookieSettings(
        http_only=raw.get("httpOnly"),
        same_site=raw.get("sameSite"),
        path=raw.get("path"),
        expiration_days=raw.get("expirationDays"),
    )
