"""HTTP session helpers."""

import json
from typing import Any

import aiohttp


async def create_session(
    timeout: int = 300, connector: aiohttp.TCPConnector | None = None
) -> aiohttp.ClientSession:
    """Create an aiohttp session for registry requests.

    Args:
        timeout: Total request timeout in seconds
        connector: Optional connector for connection pooling

    Returns:
        New client session; the caller owns and closes it
    """
    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout),
    )


def parse_json_response(text: str) -> Any:
    """Parse a JSON response body, returning None when it is not JSON."""
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None
