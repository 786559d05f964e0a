"""Tests unitaires — bridge/multiplexer.py.

Objectifs:
    - Identifiants de session non devinables et uniques
    - Corrélation: l'id d'origine du client est restauré, livraison au plus une fois
    - Éviction idempotente, échec des requêtes en vol de la session seulement
"""

from __future__ import annotations

import asyncio

import pytest

from portainer_mcp_wrapper.bridge.multiplexer import SessionMultiplexer
from portainer_mcp_wrapper.core.exceptions import SessionClosedError, SubprocessDiedError
from portainer_mcp_wrapper.core.models import PendingRequest, SessionState


def _pending(mux: SessionMultiplexer, session_id: str, original_id, process_key: str = "shared#1") -> PendingRequest:
    return PendingRequest(
        correlation_id=mux.allocate_id(),
        session_id=session_id,
        process_key=process_key,
        original_id=original_id,
        future=asyncio.get_running_loop().create_future(),
        method="ping",
    )


@pytest.mark.unit
def test_register_generates_unique_unguessable_ids():
    mux = SessionMultiplexer()
    ids = {mux.register("shared") for _ in range(200)}

    assert len(ids) == 200
    assert len(mux) == 200
    assert all(len(session_id) >= 32 for session_id in ids)


@pytest.mark.unit
def test_register_defaults_to_dedicated_process_key():
    mux = SessionMultiplexer()
    session_id = mux.register()
    assert mux.get(session_id).process_key == f"session:{session_id}"
    assert mux.get(None) is None
    assert mux.get("unknown") is None


@pytest.mark.unit
def test_allocate_id_is_monotonic():
    mux = SessionMultiplexer()
    first, second = mux.allocate_id(), mux.allocate_id()
    assert second > first


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resolve_restores_original_id_once():
    mux = SessionMultiplexer()
    session_id = mux.register("shared")
    pending = _pending(mux, session_id, original_id="client-7")
    mux.correlate(session_id, pending)

    response = {"jsonrpc": "2.0", "id": pending.correlation_id, "result": "pong"}
    assert mux.resolve(pending.correlation_id, response) is True
    assert await pending.future == {"jsonrpc": "2.0", "id": "client-7", "result": "pong"}
    assert response["id"] == pending.correlation_id

    # Duplicat: ignoré
    assert mux.resolve(pending.correlation_id, response) is False
    assert mux.pending_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resolve_unknown_or_unhashable_id_is_dropped():
    mux = SessionMultiplexer()
    assert mux.resolve(999, {"id": 999, "result": 1}) is False
    assert mux.resolve(None, {"id": None, "error": {}}) is False
    assert mux.resolve({"x": 1}, {"id": {"x": 1}, "result": 1}) is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_colliding_client_ids_are_routed_to_their_session():
    mux = SessionMultiplexer()
    a, b = mux.register("shared"), mux.register("shared")
    pending_a = _pending(mux, a, original_id=1)
    pending_b = _pending(mux, b, original_id=1)
    mux.correlate(a, pending_a)
    mux.correlate(b, pending_b)

    assert pending_a.correlation_id != pending_b.correlation_id

    # Réponses dans l'ordre inverse
    mux.resolve(pending_b.correlation_id, {"jsonrpc": "2.0", "id": pending_b.correlation_id, "result": "B"})
    mux.resolve(pending_a.correlation_id, {"jsonrpc": "2.0", "id": pending_a.correlation_id, "result": "A"})

    assert (await pending_a.future)["result"] == "A"
    assert (await pending_b.future)["result"] == "B"
    assert (await pending_a.future)["id"] == (await pending_b.future)["id"] == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_correlate_rejects_closed_or_unknown_session():
    mux = SessionMultiplexer()
    session_id = mux.register("shared")
    mux.get(session_id).closing = True

    with pytest.raises(SessionClosedError):
        mux.correlate(session_id, _pending(mux, session_id, 1))
    with pytest.raises(SessionClosedError):
        mux.correlate("unknown", _pending(mux, "unknown", 1))
    assert mux.pending_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_evict_fails_only_that_session_and_is_idempotent():
    mux = SessionMultiplexer()
    a, b = mux.register("shared"), mux.register("shared")
    pending_a = _pending(mux, a, 1)
    pending_b = _pending(mux, b, 1)
    mux.correlate(a, pending_a)
    mux.correlate(b, pending_b)

    session = mux.evict(a)

    assert session.state == SessionState.CLOSED
    with pytest.raises(SessionClosedError):
        await pending_a.future
    assert not pending_b.future.done()
    assert mux.pending_count == 1

    # Deuxième éviction: no-op
    assert mux.evict(a) is None
    assert mux.evict("never-registered") is None
    assert len(mux) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_fail_process_targets_one_incarnation():
    mux = SessionMultiplexer()
    session_id = mux.register("shared")
    old = _pending(mux, session_id, 1, process_key="shared#1")
    new = _pending(mux, session_id, 2, process_key="shared#2")
    mux.correlate(session_id, old)
    mux.correlate(session_id, new)

    failed = mux.fail_process("shared#1", lambda: SubprocessDiedError())

    assert failed == 1
    with pytest.raises(SubprocessDiedError):
        await old.future
    assert not new.future.done()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_discard_after_timeout_drops_late_response():
    mux = SessionMultiplexer()
    session_id = mux.register("shared")
    pending = _pending(mux, session_id, 1)
    mux.correlate(session_id, pending)

    assert mux.discard(pending.correlation_id) is pending
    assert mux.pending_count == 0
    assert mux.resolve(pending.correlation_id, {"id": pending.correlation_id, "result": 1}) is False
