"""Helpers partagés par les tests (settings de test, chemins des fixtures)."""

from __future__ import annotations

import asyncio
from pathlib import Path

from portainer_mcp_wrapper.config.settings import Settings

FAKE_SERVER = Path(__file__).resolve().parent / "fake_mcp_server_stdio.py"

ACCESS_TOKEN = "test-access-token"
PORTAINER_TOKEN = "ptr_secret_token"


def make_settings(**overrides) -> Settings:
    """Settings de test: timeouts courts, aucun binaire réel."""
    values = {
        "portainer_api_token": PORTAINER_TOKEN,
        "mcp_access_token": ACCESS_TOKEN,
        "portainer_url": "http://portainer.test:9000",
        "mcp_binary_path": "/fake/portainer-mcp",
        "request_timeout": 2.0,
        "session_drain_timeout": 0.2,
        "shutdown_grace": 0.2,
        "kill_timeout": 0.2,
        "restart_backoff": 0.01,
        "sse_keepalive": 5.0,
    }
    values.update(overrides)
    return Settings(**values)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Attend qu'une condition devienne vraie (boucle asyncio)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition non atteinte avant le timeout")
        await asyncio.sleep(0.005)
