"""Registry bearer-token authentication for anonymous and basic pull access."""

import asyncio
import logging
import re

import aiohttp

from ..exceptions import AuthenticationError, RegistryConnectionError
from .session import parse_json_response
from .types import BearerToken, RegistryConfig

logger = logging.getLogger(__name__)

CHALLENGE_PARAM_PATTERN = re.compile(r'(\w+)=(?:"([^"]*)"|([^,\s]*))')


def parse_www_authenticate(header: str) -> dict[str, str]:
    """Parse a ``WWW-Authenticate: Bearer ...`` challenge.

    Args:
        header: Raw header value, e.g.
            ``Bearer realm="https://auth.example.com/token",service="registry"``

    Returns:
        Mapping of challenge parameters (realm, service, scope, ...)

    Raises:
        AuthenticationError: If the challenge is not a Bearer challenge
    """
    scheme, _, params = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        raise AuthenticationError(f"Unsupported authentication scheme: {scheme!r}")

    challenge = {}
    for match in CHALLENGE_PARAM_PATTERN.finditer(params):
        key, quoted, bare = match.groups()
        challenge[key.lower()] = quoted if quoted is not None else bare
    return challenge


def default_scope(repository: str) -> str:
    return f"repository:{repository}:pull"


async def request_token(
    session: aiohttp.ClientSession,
    config: RegistryConfig,
    challenge: dict[str, str],
    repository: str,
) -> BearerToken:
    """Exchange a parsed challenge for a bearer token.

    Raises:
        AuthenticationError: If the token service rejects the request or
            returns no token
    """
    realm = challenge.get("realm")
    if not realm:
        raise AuthenticationError("Authentication challenge has no realm")

    scope = challenge.get("scope") or default_scope(repository)
    params = {}
    if challenge.get("service"):
        params["service"] = challenge["service"]
    params["scope"] = scope

    auth = None
    if config.has_credentials:
        auth = aiohttp.BasicAuth(config.username, config.password)

    try:
        async with session.get(realm, params=params, auth=auth) as resp:
            if resp.status != 200:
                raise AuthenticationError(
                    f"Token request to {realm} failed with status {resp.status}"
                )
            body = parse_json_response(await resp.text())
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise RegistryConnectionError(f"Token request to {realm} failed: {e}") from e

    if not isinstance(body, dict):
        raise AuthenticationError("Token response is not a JSON object")

    token = body.get("token") or body.get("access_token")
    if not token:
        raise AuthenticationError("Token response does not contain a token")

    logger.debug("Obtained bearer token for scope %s", scope)
    return BearerToken(token=token, scope=scope)


async def authenticate(
    session: aiohttp.ClientSession, config: RegistryConfig, repository: str
) -> BearerToken:
    """Obtain a pull token for a repository.

    Probes ``/v2/`` without credentials. A 200 response means the registry
    needs no token; a 401 challenge is exchanged for one. The token is used
    for the whole run and is never refreshed.

    Args:
        session: HTTP session
        config: Registry configuration
        repository: Repository path (e.g., library/nginx)

    Returns:
        Bearer token, empty when no challenge was issued

    Raises:
        AuthenticationError: On any other probe or token status
        RegistryConnectionError: If the registry cannot be reached
    """
    url = f"{config.base_url}/v2/"
    try:
        async with session.get(url) as resp:
            status = resp.status
            header = resp.headers.get("WWW-Authenticate", "")
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise RegistryConnectionError(f"Cannot reach registry at {url}: {e}") from e

    if status == 200:
        logger.debug("Registry %s issued no authentication challenge", config.base_url)
        return BearerToken()

    if status != 401:
        raise AuthenticationError(f"Registry probe {url} returned status {status}")

    if not header:
        raise AuthenticationError("Registry returned 401 without a challenge")

    challenge = parse_www_authenticate(header)
    return await request_token(session, config, challenge, repository)
