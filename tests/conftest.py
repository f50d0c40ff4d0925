"""Test configuration and fixtures."""

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from registry_tar_export.core.retry import RetryPolicy
from registry_tar_export.core.session import create_session
from registry_tar_export.core.types import RegistryConfig
from tests.helpers import FakeRegistry


@pytest_asyncio.fixture
async def registry():
    """Start an isolated fake registry on a free local port."""
    fake = FakeRegistry()
    server = TestServer(fake.make_app())
    await server.start_server()
    fake.host = f"{server.host}:{server.port}"
    fake.url = f"http://{fake.host}"
    try:
        yield fake
    finally:
        await server.close()


@pytest.fixture
def registry_config(registry):
    return RegistryConfig(url=registry.url, timeout=30)


@pytest_asyncio.fixture
async def session():
    session = await create_session(timeout=30)
    async with session:
        yield session


@pytest.fixture
def fast_retry():
    """Retry policy without backoff sleeps."""
    return RetryPolicy(max_attempts=3, backoff_seconds=0)
