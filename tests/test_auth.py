"""Tests for registry challenge parsing and token exchange."""

import base64

import pytest

from registry_tar_export.core.auth import (
    authenticate,
    default_scope,
    parse_www_authenticate,
)
from registry_tar_export.core.types import RegistryConfig
from registry_tar_export.exceptions import (
    AuthenticationError,
    RegistryConnectionError,
)
from tests.helpers import SERVICE, TOKEN


def test_parse_www_authenticate():
    """Test quoted and bare challenge parameters."""
    challenge = parse_www_authenticate(
        'Bearer realm="https://auth.example.com/token",service="registry.example.com",'
        'scope="repository:team/app:pull"'
    )

    assert challenge == {
        "realm": "https://auth.example.com/token",
        "service": "registry.example.com",
        "scope": "repository:team/app:pull",
    }


def test_parse_www_authenticate_unquoted():
    """Test unquoted parameter values."""
    challenge = parse_www_authenticate("bearer realm=https://auth/token, service=reg")

    assert challenge["realm"] == "https://auth/token"
    assert challenge["service"] == "reg"


def test_parse_www_authenticate_rejects_basic():
    """Test only Bearer challenges are supported."""
    with pytest.raises(AuthenticationError, match="Unsupported"):
        parse_www_authenticate('Basic realm="registry"')


def test_default_scope():
    """Test the pull scope for a repository."""
    assert default_scope("library/nginx") == "repository:library/nginx:pull"


@pytest.mark.asyncio
async def test_authenticate_without_challenge(registry, registry_config, session):
    """Test an open registry yields an empty token."""
    token = await authenticate(session, registry_config, "team/app")

    assert not token
    assert token.auth_headers() == {}


@pytest.mark.asyncio
async def test_authenticate_with_challenge(registry, registry_config, session):
    """Test a 401 challenge is exchanged for a bearer token."""
    registry.require_auth = True

    token = await authenticate(session, registry_config, "team/app")

    assert token.token == TOKEN
    assert token.scope == "repository:team/app:pull"
    assert token.auth_headers() == {"Authorization": f"Bearer {TOKEN}"}

    token_request = [r for r in registry.requests if r.path == "/token"][0]
    assert token_request.query == {
        "service": SERVICE,
        "scope": "repository:team/app:pull",
    }
    assert "Authorization" not in token_request.headers


@pytest.mark.asyncio
async def test_authenticate_sends_credentials(registry, session):
    """Test configured credentials are sent to the token service."""
    registry.require_auth = True
    config = RegistryConfig(url=registry.url, username="user", password="secret")

    await authenticate(session, config, "team/app")

    token_request = [r for r in registry.requests if r.path == "/token"][0]
    expected = base64.b64encode(b"user:secret").decode()
    assert token_request.headers["Authorization"] == f"Basic {expected}"


@pytest.mark.asyncio
async def test_authenticate_accepts_access_token(registry, registry_config, session):
    """Test OAuth2 style access_token responses."""
    registry.require_auth = True
    registry.token_body = {"access_token": "oauth-token"}

    token = await authenticate(session, registry_config, "team/app")

    assert token.token == "oauth-token"


@pytest.mark.asyncio
async def test_authenticate_token_rejected(registry, registry_config, session):
    """Test a failing token service raises AuthenticationError."""
    registry.require_auth = True
    registry.token_status = 403

    with pytest.raises(AuthenticationError, match="status 403") as exc_info:
        await authenticate(session, registry_config, "team/app")

    assert exc_info.value.kind == "AUTH_ERROR"


@pytest.mark.asyncio
async def test_authenticate_token_missing(registry, registry_config, session):
    """Test a token response without a token raises AuthenticationError."""
    registry.require_auth = True
    registry.token_body = {"expires_in": 300}

    with pytest.raises(AuthenticationError, match="does not contain a token"):
        await authenticate(session, registry_config, "team/app")


@pytest.mark.asyncio
async def test_authenticate_challenge_without_realm(registry, registry_config, session):
    """Test a challenge without a realm raises AuthenticationError."""
    registry.require_auth = True
    registry.challenge = 'Bearer service="fake-registry"'

    with pytest.raises(AuthenticationError, match="no realm"):
        await authenticate(session, registry_config, "team/app")


@pytest.mark.asyncio
async def test_authenticate_unexpected_probe_status(registry, registry_config, session):
    """Test probe statuses other than 200 and 401 raise AuthenticationError."""
    registry.probe_status = 500

    with pytest.raises(AuthenticationError, match="status 500"):
        await authenticate(session, registry_config, "team/app")


@pytest.mark.asyncio
async def test_authenticate_unreachable_registry(session):
    """Test connection failures raise RegistryConnectionError."""
    config = RegistryConfig(url="http://127.0.0.1:1")

    with pytest.raises(RegistryConnectionError):
        await authenticate(session, config, "team/app")
