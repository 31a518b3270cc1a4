"""
FastAPI integration: run the gateway flows in front of a FastAPI app.

Usage:
    from fastapi import Depends, FastAPI
    from edge_auth import Authenticator, TokenClaims
    from edge_auth.fastapi import auth_gate, create_auth_router, require_session

    authenticator = Authenticator(config)

    app = FastAPI()
    app.include_router(create_auth_router(authenticator))
    # the router's own flows must not run behind the gate
    app.middleware("http")(
        auth_gate(
            authenticator,
            exclude_paths=["/signin", "/refresh", "/signout", "/parseauth", "/health"],
        )
    )

    @app.get("/api/me")
    async def me(claims: TokenClaims = Depends(require_session(authenticator))):
        return {"username": claims.username}
"""

import logging
from collections.abc import Awaitable, Callable, Iterable

from fastapi import APIRouter, HTTPException, Request, Response, status

from edge_auth.claims import TokenClaims
from edge_auth.core import Authenticator
from edge_auth.events import EdgeRequest, EdgeResponse

logger = logging.getLogger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]


def _credentials_exception(detail: str = "Not signed in") -> HTTPException:
    """Create a 401 Unauthorized exception."""
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def edge_request_from_starlette(request: Request) -> EdgeRequest:
    """Convert a Starlette/FastAPI request into an EdgeRequest."""
    headers: dict[str, list[str]] = {}
    for name, value in request.headers.items():
        headers.setdefault(name.lower(), []).append(value)
    return EdgeRequest(uri=request.url.path, querystring=request.url.query, headers=headers)


def to_starlette_response(response: EdgeResponse) -> Response:
    """Convert an EdgeResponse into a Starlette response, keeping every Set-Cookie."""
    result = Response(content=response.body or "", status_code=response.status)
    for name, values in response.headers.items():
        for value in values:
            result.headers.append(name, value)
    return result


def auth_gate(
    authenticator: Authenticator,
    exclude_paths: Iterable[str] = (),
) -> Callable[[Request, CallNext], Awaitable[Response]]:
    """
    Create an HTTP middleware running the default gate on every request.

    Requests with a valid session reach the app unchanged; everything else
    gets the gate's redirect. Paths starting with one of ``exclude_paths``
    bypass the gate; list the paths served by ``create_auth_router`` there,
    or an expired session is sent to the hosted UI instead of signing out.

    Example:
        app.middleware("http")(
            auth_gate(authenticator, exclude_paths=["/signin", "/refresh", "/signout", "/health"])
        )
    """
    excluded = tuple(exclude_paths)

    async def middleware(request: Request, call_next: CallNext) -> Response:
        if excluded and request.url.path.startswith(excluded):
            return await call_next(request)

        result = await authenticator.handle(edge_request_from_starlette(request))
        if isinstance(result, EdgeResponse):
            return to_starlette_response(result)
        return await call_next(request)

    return middleware


def create_auth_router(
    authenticator: Authenticator,
    sign_in_path: str = "/signin",
    refresh_path: str = "/refresh",
    sign_out_path: str = "/signout",
) -> APIRouter:
    """
    Create a router exposing the explicit flows.

    The parse-auth callback is mounted at the configured parse_auth_path, if any.

    Args:
        authenticator: The gateway flow controller
        sign_in_path: Path of the sign-in flow
        refresh_path: Path of the refresh flow
        sign_out_path: Path of the sign-out flow

    Returns:
        APIRouter to include in the app
    """
    router = APIRouter()

    @router.get(sign_in_path, include_in_schema=False)
    async def sign_in(request: Request) -> Response:
        result = await authenticator.handle_sign_in(edge_request_from_starlette(request))
        return to_starlette_response(result)

    @router.get(refresh_path, include_in_schema=False)
    async def refresh(request: Request) -> Response:
        result = await authenticator.handle_refresh_token(edge_request_from_starlette(request))
        return to_starlette_response(result)

    @router.get(sign_out_path, include_in_schema=False)
    async def sign_out(request: Request) -> Response:
        result = await authenticator.handle_sign_out(edge_request_from_starlette(request))
        return to_starlette_response(result)

    parse_auth_path = authenticator.config.parse_auth_path
    if parse_auth_path:

        @router.get(f"/{parse_auth_path}", include_in_schema=False)
        async def parse_auth(request: Request) -> Response:
            result = await authenticator.handle_parse_auth(edge_request_from_starlette(request))
            return to_starlette_response(result)

    return router


def require_session(
    authenticator: Authenticator,
) -> Callable[..., Awaitable[TokenClaims]]:
    """
    Create a FastAPI dependency that requires a valid session cookie.

    Returns TokenClaims if the ID token cookie verifies, raises 401 otherwise.
    Unlike the gate it never redirects or refreshes, which suits JSON APIs.

    Example:
        @app.get("/api/profile")
        async def get_profile(claims: TokenClaims = Depends(require_session(authenticator))):
            return {"username": claims.username}
    """

    async def dependency(request: Request) -> TokenClaims:
        session = await authenticator.read_session(edge_request_from_starlette(request))
        if session.claims is None:
            logger.warning(f"Session required: {session.error.message} ({session.error.code})")
            raise _credentials_exception()
        return session.claims

    return dependency


def optional_session(
    authenticator: Authenticator,
) -> Callable[..., Awaitable[TokenClaims | None]]:
    """
    Create a FastAPI dependency returning TokenClaims for a valid session, None otherwise.
    """

    async def dependency(request: Request) -> TokenClaims | None:
        session = await authenticator.read_session(edge_request_from_starlette(request))
        return session.claims

    return dependency
