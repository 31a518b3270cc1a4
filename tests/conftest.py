import pytest
from support import APP_ID, DOMAIN, REGION, USER_POOL_ID

from edge_auth import AuthConfig, CSRFProtection, LogoutConfiguration


@pytest.fixture
def config():
    """Create test config."""
    return AuthConfig(
        region=REGION,
        user_pool_id=USER_POOL_ID,
        user_pool_app_id=APP_ID,
        user_pool_domain=DOMAIN,
        same_site="Lax",
        cookie_path="/",
    )


@pytest.fixture
def csrf_config():
    """Create test config with CSRF protection and a callback path."""
    return AuthConfig(
        region=REGION,
        user_pool_id=USER_POOL_ID,
        user_pool_app_id=APP_ID,
        user_pool_domain=DOMAIN,
        same_site="Lax",
        cookie_path="/",
        csrf_protection=CSRFProtection(nonce_signing_secret="test-signing-secret"),
        parse_auth_path="/parseauth",
        logout_configuration=LogoutConfiguration(logout_uri="/logout"),
    )
