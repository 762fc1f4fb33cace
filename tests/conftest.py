"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the TESTING environment variable so no .env file is loaded and
pins admission settings to a small, predictable local configuration.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("ADMISSION_MODE", "local")

import fakeredis
import pytest


@pytest.fixture
def fake_server() -> fakeredis.FakeServer:
    """Isolated in-memory Redis server shared by the clients of one test."""
    return fakeredis.FakeServer()


@pytest.fixture
def async_store(fake_server: fakeredis.FakeServer) -> fakeredis.FakeAsyncRedis:
    """Asyncio client as used by the shared counter strategy."""
    return fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def sync_store(fake_server: fakeredis.FakeServer) -> fakeredis.FakeRedis:
    """Synchronous client for arranging and inspecting store state."""
    return fakeredis.FakeRedis(server=fake_server, decode_responses=True)
