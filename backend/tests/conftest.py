"""
Gatehouse — Test Configuration (conftest.py)
==============================================

What:  Shared pytest fixtures for the test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── fake_clock:     Manually advanced monotonic clock for window math
    ├── make_settings:  Builds Settings with test defaults plus overrides
    ├── client_for:     Opens an HTTPX AsyncClient against a given app
    └── test_client:    AsyncClient for an app built with test defaults
"""

import os

# Must be set before anything imports gatehouse.config
os.environ["APP_ENV"] = "test"
os.environ["CORS_ORIGINS"] = "http://localhost:3000"
os.environ["CORS_ALLOW_CREDENTIALS"] = "false"
os.environ["API_RATE_LIMIT"] = "1000"
os.environ["THROTTLE_TTL"] = "60000"
os.environ["LOG_LEVEL"] = "WARNING"

from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from gatehouse.config import Settings
from gatehouse.main import create_app


class FakeClock:
    """Monotonic clock stand-in; seconds only move when a test says so."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_settings():
    """
    Factory for Settings with the suite's defaults.

    Usage:
        settings = make_settings(rate_limit_requests=2, rate_limit_window_ms=1000)
    """

    def _make(**overrides) -> Settings:
        values = {
            "environment": "test",
            "cors_origins": "http://localhost:3000",
            "cors_allow_credentials": False,
            "rate_limit_requests": 1000,
            "rate_limit_window_ms": 60000,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def client_for():
    """
    Opens an AsyncClient routed straight into an ASGI app.

    Usage:
        async with client_for(app) as client:
            response = await client.get("/api/v1/")
    """

    @asynccontextmanager
    async def _client(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client

    return _client


@pytest_asyncio.fixture
async def test_client(make_settings, client_for):
    app = create_app(make_settings())
    async with client_for(app) as client:
        yield client
