"""Routes API — Endpoint MCP (Streamable HTTP).

- POST /   : un message JSON-RPC. Requête -> réponse corrélée; notification ou
             réponse client -> 202. Sans header `Mcp-Session-Id`, une session est créée.
- GET /    : flux SSE des messages serveur (notifications, requêtes serveur)
- DELETE / : ferme la session

Toutes ces routes passent par l'authentification Bearer.
"""

from __future__ import annotations

import json
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from ...bridge.codec import Message, encode, is_notification, is_request, is_response
from ...bridge.transport import TransportBridge
from ...core.constants import JSONRPC_INVALID_REQUEST, JSONRPC_PARSE_ERROR, SESSION_HEADER
from ...core.exceptions import WrapperError
from ..auth import require_bearer_token
from ..errors import error_response, protocol_error

router = APIRouter(dependencies=[Depends(require_bearer_token)])

EVENT_STREAM = "text/event-stream"


def get_bridge(request: Request) -> TransportBridge:
    return request.app.state.bridge


def _as_dict(obj: object) -> Optional[Message]:
    return obj if isinstance(obj, dict) else None


def _wants_event_stream(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return EVENT_STREAM in accept and "application/json" not in accept


def format_sse_event(message: Optional[Message]) -> bytes:
    """Un message -> un événement SSE `message`; None -> commentaire keep-alive."""
    if message is None:
        return b": keepalive\n\n"
    return b"event: message\ndata: " + encode(message) + b"\n"


async def _single_event(message: Message) -> AsyncIterator[bytes]:
    yield format_sse_event(message)


async def _sse_events(events: AsyncIterator[Optional[Message]]) -> AsyncIterator[bytes]:
    async for message in events:
        yield format_sse_event(message)


@router.post("/")
async def mcp_post(request: Request, bridge: TransportBridge = Depends(get_bridge)):
    """Forwarde un message JSON-RPC vers portainer-mcp."""

    try:
        payload = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError, RecursionError):
        return protocol_error(JSONRPC_PARSE_ERROR, "Parse error")

    message = _as_dict(payload)
    if message is None or not (is_request(message) or is_notification(message) or is_response(message)):
        return protocol_error(
            JSONRPC_INVALID_REQUEST,
            "Invalid Request",
            req_id=message.get("id") if message else None,
        )

    req_id = message.get("id")
    session_id = request.headers.get(SESSION_HEADER)
    try:
        session = bridge.get_session(session_id) if session_id else bridge.open_session()
    except WrapperError as e:
        return error_response(e, req_id)

    headers = {SESSION_HEADER: session.id}

    if is_request(message):
        try:
            response = await bridge.handle_request(session.id, message)
        except WrapperError as e:
            return error_response(e, req_id, headers)
        if _wants_event_stream(request):
            return StreamingResponse(_single_event(response), media_type=EVENT_STREAM, headers=headers)
        return JSONResponse(content=response, headers=headers)

    try:
        await bridge.send_message(session.id, message)
    except WrapperError as e:
        return error_response(e, req_id, headers)
    return Response(status_code=202, headers=headers)


@router.get("/")
async def mcp_stream(request: Request, bridge: TransportBridge = Depends(get_bridge)):
    """Ouvre le flux SSE server-push de la session."""

    session_id = request.headers.get(SESSION_HEADER)
    if not session_id:
        return protocol_error(JSONRPC_INVALID_REQUEST, f"{SESSION_HEADER} header required")

    try:
        events = bridge.open_stream(session_id)
    except WrapperError as e:
        return error_response(e)

    return StreamingResponse(
        _sse_events(events),
        media_type=EVENT_STREAM,
        headers={SESSION_HEADER: session_id, "Cache-Control": "no-cache"},
    )


@router.delete("/")
async def mcp_close(request: Request, bridge: TransportBridge = Depends(get_bridge)):
    """Ferme la session (drain borné des requêtes en vol, puis éviction)."""

    session_id = request.headers.get(SESSION_HEADER)
    if not session_id:
        return protocol_error(JSONRPC_INVALID_REQUEST, f"{SESSION_HEADER} header required")

    await bridge.close_session(session_id, reason="client")
    return Response(status_code=204)
