"""
Gateway Test Configuration
--------------------------
Shared fixtures and configuration for all tests.

Tests never reach the real API: HTTP goes through httpx.MockTransport and
backoff sleeps are recorded instead of awaited.
"""

import logging
import sys
from pathlib import Path
from typing import Callable, List

import httpx
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from api.client import APIClient, APIConfig
from api.rate_limiter import RateLimitConfig, RateLimiter


TEST_API_KEY = "0123456789abcdef0123456789abcdef01234567"


# =============================================================================
# Test Isolation
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """
    Pin the environment the client and settings read.

    A developer's real key, base URL or settings file never leaks into a
    test run.
    """
    monkeypatch.setenv("MERAKI_API_KEY", TEST_API_KEY)
    monkeypatch.delenv("MERAKI_API_BASE_URL", raising=False)
    monkeypatch.delenv("MERAKI_MCP_SETTINGS_PATH", raising=False)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def api_key():
    """The key every test client authenticates with."""
    return TEST_API_KEY


# =============================================================================
# HTTP Helpers
# =============================================================================

class SleepRecorder:
    """Stands in for asyncio.sleep and remembers every requested delay."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def make_client(sleep_recorder):
    """
    Factory for an APIClient backed by a handler function.

    The handler receives each httpx.Request and returns an httpx.Response.
    """
    def _make(
        handler: Callable[[httpx.Request], httpx.Response],
        max_requests: int = 100,
        interval_seconds: float = 1.0,
        **config_kwargs,
    ) -> APIClient:
        client = APIClient(
            APIConfig(**config_kwargs),
            rate_limiter=RateLimiter(RateLimitConfig(
                max_requests=max_requests,
                interval_seconds=interval_seconds,
            )),
            transport=httpx.MockTransport(handler),
            sleep=sleep_recorder,
        )
        return client

    return _make


@pytest.fixture
def restore_logging():
    """Undo configure_logging() so later tests see the default setup."""
    import infra.logging as gateway_logging

    logger = logging.getLogger("meraki")
    handlers, level = list(logger.handlers), logger.level
    yield logger
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
    gateway_logging._logging_initialized = False
