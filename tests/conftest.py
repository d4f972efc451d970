import contextlib
import socket

import aiohttp
import pytest
from aiohttp.test_utils import TestServer

from digger.settings import DiggerConfig


@contextlib.asynccontextmanager
async def _local_server(app):
    server = TestServer(app)
    await server.start_server()
    try:
        async with aiohttp.ClientSession() as session:
            yield server, session
    finally:
        await server.close()


@pytest.fixture
def local_server():
    """Async context manager: serve an aiohttp.web app on localhost, yield (server, session)."""
    return _local_server


@pytest.fixture
def config(tmp_path) -> DiggerConfig:
    return DiggerConfig(
        html_fetch_timeout_s=3.0,
        resource_fetch_timeout_s=2.0,
        host_meta_timeout_s=2.0,
        wayback_timeout_s=2.0,
        cache_path=str(tmp_path / "cache.json"),
    )


@pytest.fixture
def closed_port() -> int:
    """A localhost port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
