"""
Flow controller for the edge authentication gateway.

``Authenticator`` exposes five flows, each taking an inbound request and
returning either the request itself (forward to the origin) or a response:

- ``handle``: default gate for every protected request
- ``handle_sign_in``: explicit sign-in entry point
- ``handle_parse_auth``: OAuth callback that exchanges the authorization code
- ``handle_refresh_token``: explicit session refresh
- ``handle_sign_out``: revoke the refresh token and clear the session cookies

Only ``handle_parse_auth`` ever answers with an error (400); the other flows
turn every failure into a forward, a redirect to the hosted UI or a cookie
clearing redirect. The exception is a request without a Host header, which
every flow answers with 400.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from urllib.parse import urlencode

from edge_auth import csrf
from edge_auth.claims import TokenClaims
from edge_auth.config import COOKIE_KINDS, LOG_LEVELS, AuthConfig
from edge_auth.cookies import (
    ACCESS_TOKEN,
    CSRF_COOKIES,
    EPOCH,
    ID_TOKEN,
    LAST_AUTH_USER,
    NONCE_COOKIE,
    NONCE_HMAC_COOKIE,
    PKCE_COOKIE,
    REFRESH_TOKEN,
    TOKEN_SCOPES,
    TOKEN_SCOPES_VALUE,
    CookieAttributes,
    apply_overrides,
    extract_csrf_tokens,
    extract_tokens,
    get_cookie_domain,
    parse_cookies,
    serialize_cookie,
    session_cookie_name,
)
from edge_auth.errors import (
    AuthenticationError,
    MissingCodeError,
    RevokeError,
    TokenMissingError,
    TokenVerificationError,
)
from edge_auth.events import EdgeRequest, EdgeResponse
from edge_auth.tokens import TokenClient, TokenSet
from edge_auth.verifier import JWKSTokenVerifier, TokenVerifier

logger = logging.getLogger(__name__)

CSRF_COOKIE_LIFETIME = timedelta(minutes=10)


class AuthState(str, Enum):
    """Authentication state of one request at the default gate."""

    UNAUTHENTICATED = "unauthenticated"
    HAS_VALID_SESSION = "has_valid_session"
    HAS_EXPIRED_SESSION_WITH_REFRESH = "has_expired_session_with_refresh"
    HAS_EXPIRED_SESSION_NO_REFRESH = "has_expired_session_no_refresh"
    CALLBACK_WITH_CODE = "callback_with_code"
    LOGOUT_REQUESTED = "logout_requested"


def classify(
    *,
    has_id_token: bool,
    id_token_valid: bool,
    has_refresh_token: bool,
    logout_requested: bool,
    has_code: bool,
) -> AuthState:
    """
    Decision table for the default gate. Rows are checked top to bottom.

    | logout | id token valid | refresh token | code | id token | state                            |
    |--------|----------------|---------------|------|----------|----------------------------------|
    | yes    | *              | *             | *    | *        | LOGOUT_REQUESTED                 |
    | no     | yes            | *             | *    | yes      | HAS_VALID_SESSION                |
    | no     | no             | yes           | *    | *        | HAS_EXPIRED_SESSION_WITH_REFRESH |
    | no     | no             | no            | yes  | *        | CALLBACK_WITH_CODE               |
    | no     | no             | no            | no   | yes      | HAS_EXPIRED_SESSION_NO_REFRESH   |
    | no     | no             | no            | no   | no       | UNAUTHENTICATED                  |
    """
    if logout_requested:
        return AuthState.LOGOUT_REQUESTED
    if has_id_token and id_token_valid:
        return AuthState.HAS_VALID_SESSION
    if has_refresh_token:
        return AuthState.HAS_EXPIRED_SESSION_WITH_REFRESH
    if has_code:
        return AuthState.CALLBACK_WITH_CODE
    if has_id_token:
        return AuthState.HAS_EXPIRED_SESSION_NO_REFRESH
    return AuthState.UNAUTHENTICATED


@dataclass(frozen=True)
class Session:
    """
    Result of reading and verifying the session cookies of one request.

    Exactly one of ``claims`` and ``error`` is set.
    """

    tokens: TokenSet | None
    claims: TokenClaims | None = None
    error: AuthenticationError | None = None

    @property
    def valid(self) -> bool:
        return self.claims is not None

    @property
    def has_id_token(self) -> bool:
        return bool(self.tokens and self.tokens.id_token)

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.tokens and self.tokens.refresh_token)


RequestLike = EdgeRequest | Mapping[str, Any]


def _as_request(request: RequestLike) -> EdgeRequest:
    if isinstance(request, EdgeRequest):
        return request
    return EdgeRequest.from_event(request)


def _missing_host(request: EdgeRequest) -> EdgeResponse:
    # cookie domains and redirect URLs are built from Host
    logger.warning(f"Request {request.uri} has no Host header")
    return EdgeResponse.bad_request("Missing Host header")


class Authenticator:
    """
    Edge authentication flow controller.

    Holds only the immutable configuration and its collaborators; no state is
    kept between requests.

    Example:
        authenticator = Authenticator(config)

        async def viewer_request(event, context):
            result = await authenticator.handle(event)
            return result.to_event()
    """

    def __init__(
        self,
        config: AuthConfig,
        verifier: TokenVerifier | None = None,
        token_client: TokenClient | None = None,
    ) -> None:
        self.config = config
        self.verifier = verifier or JWKSTokenVerifier(config)
        self.token_client = token_client or TokenClient(config)
        if config.log_level:
            logging.getLogger("edge_auth").setLevel(LOG_LEVELS[config.log_level.lower()])

    @classmethod
    def from_options(cls, options: Mapping[str, Any], **kwargs: Any) -> "Authenticator":
        """Create an Authenticator from camelCase options (see AuthConfig.from_options)."""
        return cls(AuthConfig.from_options(options), **kwargs)

    # Public flows

    async def handle(self, request: RequestLike) -> EdgeRequest | EdgeResponse:
        """
        Default gate.

        - valid ID token: forward the request unmodified
        - invalid ID token with a refresh token: refresh and set new cookies
        - ?code= present: exchange it and set cookies
        - logout path: revoke and clear cookies
        - otherwise: redirect to the hosted UI
        """
        request = _as_request(request)
        if not request.has_host:
            return _missing_host(request)
        params = request.params
        session = await self.read_session(request)

        state = classify(
            has_id_token=session.has_id_token,
            id_token_valid=session.valid,
            has_refresh_token=session.has_refresh_token,
            logout_requested=self._is_logout(request),
            has_code=bool(params.get("code")),
        )
        logger.debug(f"Request {request.uri} classified as {state.value}")

        if state is AuthState.LOGOUT_REQUESTED:
            return await self._sign_out(request, session.tokens)

        if state is AuthState.HAS_VALID_SESSION:
            logger.info(f"Forwarding request {request.uri} for user {session.claims.username}")
            return request

        if state is AuthState.HAS_EXPIRED_SESSION_WITH_REFRESH:
            try:
                tokens = await self.token_client.exchange_refresh_token(
                    self._oauth_redirect_uri(request), session.tokens.refresh_token
                )
                return await self._session_response(tokens, request, request.path_with_query)
            except AuthenticationError as e:
                logger.info(f"Unable to refresh session ({e.code}), re-authenticating")
            state = classify(
                has_id_token=session.has_id_token,
                id_token_valid=False,
                has_refresh_token=False,
                logout_requested=False,
                has_code=bool(params.get("code")),
            )

        if state is AuthState.CALLBACK_WITH_CODE:
            try:
                return await self._complete_login(request)
            except AuthenticationError as e:
                logger.info(f"Unable to complete login ({e.code}), re-authenticating")
                return self._authorize_redirect(request, request.uri)

        logger.debug(f"User isn't authenticated: {session.error}")
        return self._authorize_redirect(request, request.path_with_query)

    async def handle_sign_in(self, request: RequestLike) -> EdgeResponse:
        """
        Send authenticated users to ``redirect_uri`` (default: site root), and
        everyone else to the hosted UI.
        """
        request = _as_request(request)
        if not request.has_host:
            return _missing_host(request)
        redirect_uri = request.params.get("redirect_uri") or self._site_root(request)

        session = await self.read_session(request)
        if session.valid:
            logger.info(f"User {session.claims.username} already signed in")
            return EdgeResponse.redirect(redirect_uri)

        logger.debug(f"User isn't authenticated: {session.error}")
        return self._authorize_redirect(request, redirect_uri)

    async def handle_parse_auth(self, request: RequestLike) -> EdgeResponse:
        """
        OAuth callback: validate CSRF cookies (when enabled), exchange the
        code, set the session cookies and redirect to the destination in state.

        Any failure answers 400 with the error description.
        """
        request = _as_request(request)
        if not request.has_host:
            return _missing_host(request)
        if not self.config.parse_auth_path:
            logger.error("handle_parse_auth called but parse_auth_path is not set")
            return EdgeResponse.bad_request("parse_auth_path is not set")

        try:
            return await self._complete_login(request)
        except AuthenticationError as e:
            logger.warning(f"Unable to exchange code for tokens: {e.message} ({e.code})")
            return EdgeResponse.bad_request(e.message)

    async def handle_refresh_token(self, request: RequestLike) -> EdgeResponse:
        """
        Refresh a valid session and redirect to ``redirect_uri`` (default: site root).

        Without a valid ID token and a refresh token, or if the refresh fails,
        redirect to the hosted UI instead.
        """
        request = _as_request(request)
        if not request.has_host:
            return _missing_host(request)
        redirect_uri = request.params.get("redirect_uri") or self._site_root(request)

        session = await self.read_session(request)
        if session.valid and session.has_refresh_token:
            try:
                tokens = await self.token_client.exchange_refresh_token(
                    self._oauth_redirect_uri(request), session.tokens.refresh_token
                )
                logger.debug(f"Refreshed tokens for user {session.claims.username}")
                return await self._session_response(tokens, request, redirect_uri)
            except AuthenticationError as e:
                logger.info(f"Unable to refresh session ({e.code})")
        else:
            logger.debug(f"No refreshable session: {session.error or 'missing refresh token'}")

        return self._authorize_redirect(request, redirect_uri)

    async def handle_sign_out(self, request: RequestLike) -> EdgeResponse:
        """
        Revoke the refresh token and clear the session cookies.

        Cookies are cleared even if revocation fails.
        """
        request = _as_request(request)
        if not request.has_host:
            return _missing_host(request)
        try:
            tokens = extract_tokens(request.cookie_headers, self.config.cookie_base)
        except TokenMissingError as e:
            logger.info(f"No tokens to revoke ({e.code}), clearing cookies")
            tokens = None
        return await self._sign_out(request, tokens)

    # Session cookies

    async def read_session(self, request: EdgeRequest) -> Session:
        """Extract the session tokens from cookies and verify the ID token."""
        try:
            tokens = extract_tokens(request.cookie_headers, self.config.cookie_base)
        except TokenMissingError as e:
            logger.debug(f"No session: {e.message}")
            return Session(tokens=None, error=e)

        try:
            claims = await self.verifier.verify(tokens.id_token)
        except TokenVerificationError as e:
            logger.info(f"Token verification failed ({e.code})")
            return Session(tokens=tokens, error=e)

        return Session(tokens=tokens, claims=claims)

    async def clear_cookies(
        self, request: EdgeRequest, tokens: TokenSet | None = None
    ) -> EdgeResponse:
        """
        Redirect response expiring the session cookies.

        If the ID token verifies, the known cookie kinds of that user are
        cleared. Otherwise every request cookie carrying the cookie prefix is
        cleared, whatever its suffix. Each cookie is expired with the Domain,
        Path and SameSite it was set with, per-kind overrides included.

        The redirect goes to the configured logout redirect, else the
        ``redirect_uri`` query parameter, else the site root.
        """
        logout = self.config.logout_configuration
        location = (
            (logout.logout_redirect_uri if logout else None)
            or request.params.get("redirect_uri")
            or self._site_root(request)
        )
        base = self.config.cookie_base

        try:
            claims = await self.verifier.verify(tokens.id_token if tokens else None)
        except TokenVerificationError:
            logger.info("Unable to verify token, clearing every cookie with the session prefix")
            names = []
            for name, _ in parse_cookies(request.cookie_headers):
                if name.startswith(f"{base}.") and name not in names:
                    names.append(name)
        else:
            logger.info(f"Token verified, clearing cookies of user {claims.username}")
            kinds = [ACCESS_TOKEN, ID_TOKEN]
            if tokens.refresh_token:
                kinds.append(REFRESH_TOKEN)
            kinds.append(TOKEN_SCOPES)
            names = [session_cookie_name(base, claims.username, kind) for kind in kinds]
            names.append(f"{base}.{LAST_AUTH_USER}")

        return EdgeResponse.redirect(
            location, [serialize_cookie(name, "", self._expired(request, name)) for name in names]
        )

    def _expired(self, request: EdgeRequest, name: str) -> CookieAttributes:
        """
        Attributes expiring cookie ``name`` with the same Domain, Path and
        SameSite it was set with, so the browser matches and drops it.
        """
        base = self.config.cookie_base
        if name in {f"{base}.{kind}" for kind in CSRF_COOKIES}:
            return self._csrf_attributes(EPOCH)

        attributes = self._cookie_attributes(request, expires=EPOCH)
        kind = name.rsplit(".", 1)[-1]
        if kind in COOKIE_KINDS:
            override = self.config.cookie_settings_overrides.for_kind(kind)
            attributes = replace(apply_overrides(attributes, override), expires=EPOCH)
        return attributes

    async def _sign_out(self, request: EdgeRequest, tokens: TokenSet | None) -> EdgeResponse:
        if tokens is not None and tokens.refresh_token:
            try:
                await self.token_client.revoke(tokens.refresh_token)
                logger.info("Revoked tokens, clearing cookies")
                return await self.clear_cookies(request, tokens)
            except RevokeError as e:
                logger.warning(f"Unable to revoke tokens ({e.code}), clearing cookies")
        return await self.clear_cookies(request)

    async def _session_response(
        self, tokens: TokenSet, request: EdgeRequest, location: str
    ) -> EdgeResponse:
        """Redirect to ``location`` setting the session cookies for ``tokens``."""
        claims = await self.verifier.verify(tokens.id_token)
        username = claims.username
        base = self.config.cookie_base
        overrides = self.config.cookie_settings_overrides

        now = datetime.now(timezone.utc)
        attributes = self._cookie_attributes(
            request, expires=now + timedelta(days=self.config.cookie_expiration_days)
        )

        cookies = []
        for kind, value in (
            (ACCESS_TOKEN, tokens.access_token),
            (ID_TOKEN, tokens.id_token),
            (REFRESH_TOKEN, tokens.refresh_token),
        ):
            if value:
                cookies.append(
                    serialize_cookie(
                        session_cookie_name(base, username, kind),
                        value,
                        apply_overrides(attributes, overrides.for_kind(kind), now),
                    )
                )
        cookies.append(
            serialize_cookie(
                session_cookie_name(base, username, TOKEN_SCOPES), TOKEN_SCOPES_VALUE, attributes
            )
        )
        cookies.append(serialize_cookie(f"{base}.{LAST_AUTH_USER}", username, attributes))

        if self.config.csrf_protection:
            cookies.extend(self._csrf_cookies(None))

        logger.info(f"Setting session cookies for user {username}")
        return EdgeResponse.redirect(location, cookies)

    # Login

    async def _complete_login(self, request: EdgeRequest) -> EdgeResponse:
        """
        Exchange the callback's code for tokens and answer with session cookies.

        With CSRF protection the state/cookie check runs before the exchange.
        """
        params = request.params
        code = params.get("code")
        if not code:
            logger.debug("Code param not found")
            raise MissingCodeError("OAuth code parameter not found")

        code_verifier = None
        secret = self._csrf_secret
        if secret:
            tokens = extract_csrf_tokens(request.cookie_headers, self.config.cookie_base)
            state = csrf.validate(
                params.get("state"),
                tokens.get(NONCE_COOKIE),
                tokens.get(NONCE_HMAC_COOKIE),
                tokens.get(PKCE_COOKIE),
                secret,
            )
            location = state.get("redirect_uri")
            code_verifier = tokens[PKCE_COOKIE]
        else:
            location = params.get("state")

        session_tokens = await self.token_client.exchange_code(
            self._oauth_redirect_uri(request), code, code_verifier
        )
        return await self._session_response(
            session_tokens, request, location or self._site_root(request)
        )

    def _authorize_redirect(self, request: EdgeRequest, destination: str) -> EdgeResponse:
        """Redirect to the hosted UI; ``destination`` is where to land after login."""
        query = {
            "redirect_uri": self._oauth_redirect_uri(request),
            "response_type": "code",
            "client_id": self.config.user_pool_app_id,
        }
        cookies: list[str] = []

        secret = self._csrf_secret
        if secret:
            csrf_state = csrf.generate(destination, secret)
            query["state"] = csrf_state.state
            query["code_challenge"] = csrf_state.pkce_challenge
            query["code_challenge_method"] = "S256"
            cookies = self._csrf_cookies(csrf_state)
        else:
            query["state"] = destination

        url = f"{self.config.authorize_endpoint}?{urlencode(query)}"
        logger.debug(f"Redirecting user to {self.config.authorize_endpoint}")
        return EdgeResponse.redirect(url, cookies)

    def _csrf_cookies(self, csrf_state: csrf.CSRFState | None) -> list[str]:
        """
        CSRF cookies for a login attempt, or expired ones when ``csrf_state`` is None.

        They carry no Domain: only the host that started the login reads them.
        """
        if csrf_state is None:
            expires = EPOCH
            values = dict.fromkeys(CSRF_COOKIES, "")
        else:
            expires = datetime.now(timezone.utc) + CSRF_COOKIE_LIFETIME
            values = {
                PKCE_COOKIE: csrf_state.pkce,
                NONCE_COOKIE: csrf_state.nonce,
                NONCE_HMAC_COOKIE: csrf_state.nonce_hmac,
            }

        attributes = self._csrf_attributes(expires)
        base = self.config.cookie_base
        return [
            serialize_cookie(f"{base}.{kind}", values[kind], attributes) for kind in CSRF_COOKIES
        ]

    def _csrf_attributes(self, expires: datetime) -> CookieAttributes:
        # host-only
        return CookieAttributes(
            path=self.config.cookie_path,
            expires=expires,
            http_only=self.config.http_only,
            same_site=self.config.same_site,
        )

    # Helpers

    @property
    def _csrf_secret(self) -> str | None:
        if self.config.csrf_protection:
            return self.config.csrf_protection.nonce_signing_secret
        return None

    def _cookie_attributes(self, request: EdgeRequest, expires: datetime) -> CookieAttributes:
        return CookieAttributes(
            domain=get_cookie_domain(
                request.host, self.config.disable_cookie_domain, self.config.cookie_domain
            ),
            path=self.config.cookie_path,
            expires=expires,
            http_only=self.config.http_only,
            same_site=self.config.same_site,
        )

    def _is_logout(self, request: EdgeRequest) -> bool:
        logout = self.config.logout_configuration
        return bool(logout and request.uri.startswith(logout.logout_uri))

    def _site_root(self, request: EdgeRequest) -> str:
        return f"https://{request.host}"

    def _oauth_redirect_uri(self, request: EdgeRequest) -> str:
        """The redirect_uri registered with the identity provider for this host."""
        if self.config.parse_auth_path:
            return f"https://{request.host}/{self.config.parse_auth_path}"
        return self._site_root(request)
