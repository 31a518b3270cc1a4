"""
Tests for the FastAPI integration.
"""

import pytest
import respx
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from httpx import Response
from support import (
    COOKIE_BASE,
    JWKS_URL,
    TEST_JWKS,
    TOKEN_URL,
    StubVerifier,
    cookie_header,
    create_id_token,
    session_cookies,
)

from edge_auth import Authenticator, TokenClaims
from edge_auth.fastapi import (
    auth_gate,
    create_auth_router,
    optional_session,
    require_session,
)

AUTHORIZE_URL = "https://auth.example.com/authorize"


@pytest.fixture
def authenticator(csrf_config):
    return Authenticator(csrf_config, verifier=StubVerifier({"valid-id-token": "alice"}))


@pytest.fixture
def app(authenticator):
    """Create test FastAPI app."""
    app = FastAPI()
    app.include_router(create_auth_router(authenticator))
    app.middleware("http")(
        auth_gate(
            authenticator,
            exclude_paths=["/public", "/signin", "/refresh", "/signout", "/parseauth", "/api"],
        )
    )

    @app.get("/public")
    async def public():
        return {"message": "public"}

    @app.get("/private")
    async def private():
        return {"message": "private"}

    @app.get("/api/me")
    async def me(claims: TokenClaims = Depends(require_session(authenticator))):
        return {"username": claims.username}

    @app.get("/api/optional")
    async def optional(claims: TokenClaims | None = Depends(optional_session(authenticator))):
        if claims:
            return {"authenticated": True, "username": claims.username}
        return {"authenticated": False}

    return app


@pytest.fixture
def client(app):
    """Create test client."""
    return TestClient(app, base_url="https://testserver", follow_redirects=False)


def test_public_endpoint_no_auth(client):
    response = client.get("/public")

    assert response.status_code == 200
    assert response.json() == {"message": "public"}


def test_gate_redirects_unauthenticated(client):
    response = client.get("/private")

    assert response.status_code == 302
    assert response.headers["location"].startswith(AUTHORIZE_URL)
    assert response.headers["cache-control"] == "no-cache, no-store, max-age=0, must-revalidate"
    assert len(response.headers.get_list("set-cookie")) == 3


def test_gate_forwards_valid_session(client):
    response = client.get("/private", headers={"Cookie": cookie_header(session_cookies())})

    assert response.status_code == 200
    assert response.json() == {"message": "private"}


@respx.mock
def test_gate_refreshes_expired_session(client):
    respx.post(TOKEN_URL).mock(
        return_value=Response(200, json={"id_token": "valid-id-token", "access_token": "a"})
    )
    cookies = session_cookies(id_token="expired", refresh_token="refresh-token")

    response = client.get("/private", headers={"Cookie": cookie_header(cookies)})

    assert response.status_code == 302
    assert response.headers["location"] == "/private"
    set_cookies = response.headers.get_list("set-cookie")
    assert any(
        header.startswith(f"{COOKIE_BASE}.alice.idToken=valid-id-token;") for header in set_cookies
    )


def test_sign_in_route(client):
    response = client.get(
        "/signin?redirect_uri=/dashboard", headers={"Cookie": cookie_header(session_cookies())}
    )

    assert response.status_code == 302
    assert response.headers["location"] == "/dashboard"


def test_parse_auth_route(client):
    response = client.get("/parseauth")

    assert response.status_code == 400
    assert response.text == "OAuth code parameter not found"


def test_sign_out_route(client):
    response = client.get("/signout", headers={"Cookie": cookie_header(session_cookies())})

    assert response.status_code == 302
    assert response.headers["location"] == "https://testserver"
    assert len(response.headers.get_list("set-cookie")) == 3


def test_sign_out_route_with_expired_session(client):
    """Test that an expired session still reaches sign-out past the gate."""
    cookies = session_cookies(id_token="expired-id-token")

    response = client.get("/signout", headers={"Cookie": cookie_header(cookies)})

    assert response.status_code == 302
    assert response.headers["location"] == "https://testserver"
    set_cookies = response.headers.get_list("set-cookie")
    assert len(set_cookies) == 3
    assert all("Expires=Thu, 01 Jan 1970 00:00:00 GMT" in header for header in set_cookies)


def test_require_session_without_cookie(client):
    response = client.get("/api/me")

    assert response.status_code == 401
    assert response.json() == {"detail": "Not signed in"}


def test_require_session_with_cookie(client):
    response = client.get("/api/me", headers={"Cookie": cookie_header(session_cookies())})

    assert response.status_code == 200
    assert response.json() == {"username": "alice"}


def test_optional_session(client):
    anonymous = client.get("/api/optional")
    signed_in = client.get(
        "/api/optional", headers={"Cookie": cookie_header(session_cookies())}
    )

    assert anonymous.json() == {"authenticated": False}
    assert signed_in.json() == {"authenticated": True, "username": "alice"}


@respx.mock
def test_require_session_with_jwks_verifier(config):
    """Test the default verifier end to end."""
    respx.get(JWKS_URL).mock(return_value=Response(200, json=TEST_JWKS))
    authenticator = Authenticator(config)
    app = FastAPI()

    @app.get("/api/me")
    async def me(claims: TokenClaims = Depends(require_session(authenticator))):
        return {"username": claims.username, "sub": claims.sub}

    client = TestClient(app, follow_redirects=False)
    cookies = session_cookies("bob", id_token=create_id_token("bob"))

    response = client.get("/api/me", headers={"Cookie": cookie_header(cookies)})

    assert response.status_code == 200
    assert response.json() == {"username": "bob", "sub": "sub-bob"}
