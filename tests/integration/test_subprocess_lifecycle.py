"""Tests d'intégration — vrai sous-processus (fake_mcp_server_stdio.py).

Objectifs:
    - Spawn réel avec pipes stdio et limite de ligne
    - Aller-retour JSON-RPC ping -> pong via le bridge complet
    - Bannière non JSON ignorée, process sain conservé
    - Arrêt: fin naturelle à la fermeture de stdin, SIGKILL si SIGTERM ignoré
    - Mort du process: requêtes en vol échouées, redémarrage à la requête suivante
"""

from __future__ import annotations

import asyncio
import logging
import sys

import pytest

from fixtures.helpers import FAKE_SERVER, make_settings, wait_until
from portainer_mcp_wrapper.bridge.codec import decode, encode
from portainer_mcp_wrapper.bridge.process import SubprocessManager
from portainer_mcp_wrapper.bridge.transport import SHARED_PROCESS_KEY, TransportBridge
from portainer_mcp_wrapper.core.exceptions import LaunchError, SubprocessDiedError


def _python_launcher(*extra: str):
    """Lance le faux serveur MCP à la place du binaire configuré."""

    async def launch(executable, *args, **kwargs):
        return await asyncio.create_subprocess_exec(sys.executable, str(FAKE_SERVER), *extra, *args, **kwargs)

    return launch


@pytest.mark.integration
@pytest.mark.asyncio
async def test_real_spawn_ping_and_natural_exit():
    manager = SubprocessManager(shutdown_grace=2.0, kill_timeout=2.0)
    handle = await manager.spawn(sys.executable, [str(FAKE_SERVER)])

    await handle.write_line(encode({"jsonrpc": "2.0", "id": 1, "method": "ping"}))
    line = await asyncio.wait_for(handle.read_line(), timeout=5)

    assert decode(line) == {"jsonrpc": "2.0", "id": 1, "result": "pong"}
    status = await manager.terminate(handle)
    assert status.returncode == 0
    assert status.natural


@pytest.mark.integration
@pytest.mark.asyncio
async def test_real_spawn_missing_binary_is_launch_error():
    manager = SubprocessManager()
    with pytest.raises(LaunchError):
        await manager.spawn("/nonexistent/portainer-mcp", ["--server", "http://p"])


@pytest.mark.integration
@pytest.mark.asyncio
async def test_real_process_ignoring_sigterm_is_killed(caplog):
    caplog.set_level(logging.WARNING, logger="portainer_mcp_wrapper.subprocess")
    manager = SubprocessManager(shutdown_grace=0.2, kill_timeout=0.2)
    handle = await manager.spawn(sys.executable, [str(FAKE_SERVER), "--linger", "--ignore-sigterm"])

    # S'assure que le handler SIGTERM est installé avant l'arrêt
    await handle.write_line(encode({"jsonrpc": "2.0", "id": 1, "method": "ping"}))
    await asyncio.wait_for(handle.read_line(), timeout=5)

    status = await asyncio.wait_for(manager.terminate(handle), timeout=5)

    assert status.signaled
    assert status.returncode == -9
    assert "fake-mcp: starting" in caplog.text


@pytest.mark.integration
@pytest.mark.asyncio
async def test_bridge_forwards_whitelisted_argv_and_ignores_banner():
    settings = make_settings(read_only_mode=True, mcp_tools_file="/app/tools.yaml")
    bridge = TransportBridge(
        settings,
        manager=SubprocessManager(launcher=_python_launcher("--banner"), shutdown_grace=1.0, kill_timeout=1.0),
    )
    try:
        session = bridge.open_session()
        response = await bridge.handle_request(session.id, {"jsonrpc": "2.0", "id": "a", "method": "test/argv"})

        assert response["id"] == "a"
        assert response["result"] == [
            "--banner",
            "--server", "http://portainer.test:9000",
            "--api-token", "ptr_secret_token",
            "--tools-file", "/app/tools.yaml",
            "--read-only",
        ]

        noisy = await bridge.handle_request(session.id, {"jsonrpc": "2.0", "id": "b", "method": "test/noise"})
        assert noisy["result"] == "after-noise"
        assert len(bridge.manager.handles) == 1
    finally:
        await bridge.shutdown()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_bridge_crash_fails_in_flight_and_respawns():
    bridge = TransportBridge(
        make_settings(),
        manager=SubprocessManager(launcher=_python_launcher(), shutdown_grace=1.0, kill_timeout=1.0),
    )
    try:
        first = bridge.open_session()
        second = bridge.open_session()
        hangs = [
            asyncio.create_task(bridge.handle_request(s.id, {"jsonrpc": "2.0", "id": 1, "method": "test/hang"}))
            for s in (first, second)
        ]
        await wait_until(lambda: bridge.multiplexer.pending_count == 2, timeout=5)

        await bridge.send_message(first.id, {"jsonrpc": "2.0", "method": "test/crash"})
        results = await asyncio.wait_for(asyncio.gather(*hangs, return_exceptions=True), timeout=5)

        assert all(isinstance(r, SubprocessDiedError) for r in results)
        assert bridge.multiplexer.pending_count == 0
        assert bridge.binding(SHARED_PROCESS_KEY).consecutive_failures == 1

        response = await bridge.handle_request(first.id, {"jsonrpc": "2.0", "id": 2, "method": "ping"})
        assert response == {"jsonrpc": "2.0", "id": 2, "result": "pong"}
        assert bridge.binding(SHARED_PROCESS_KEY).generation == 2
        assert bridge.binding(SHARED_PROCESS_KEY).consecutive_failures == 0
    finally:
        await bridge.shutdown()
