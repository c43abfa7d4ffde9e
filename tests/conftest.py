"""Test configuration and fixtures."""
from __future__ import annotations

import pytest
import pytest_asyncio

from mcp_router.config import Config
from mcp_router.router import Router
from mcp_router.service_registry import ServiceRegistry

from .helpers import stub_service


@pytest.fixture
def config():
    """Config tuned for fast tests: no settle delay, short timeouts."""
    return Config(
        request_timeout=5.0,
        post_init_delay=0.0,
        ready_grace_period=0.3,
        kill_timeout=2.0,
    )


@pytest.fixture
def registry():
    """Registry with one service per stub mode used across the suite."""
    return ServiceRegistry([
        stub_service("echo"),
        stub_service("reverse", "reverse", batch=3),
        stub_service("silent", "silent", startup_timeout=0.2),
        stub_service("crashy", "crash", crash_after=1),
        stub_service("noisy", "noise"),
        stub_service("banner", "banner"),
        stub_service("exits", "exit"),
        stub_service("no-init", "no-init", startup_timeout=0.3),
        stub_service("custom-env", "echo", extra="from-definition"),
    ])


@pytest_asyncio.fixture
async def router(registry, config):
    """Router over the stub registry, stopped after the test."""
    router = Router(registry, config)
    yield router
    await router.stop()
