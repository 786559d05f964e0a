"""
Conversion des erreurs du bridge en réponses HTTP.

Le client reçoit une enveloppe JSON-RPC 2.0 stable (id préservé) avec un
message générique; la cause précise n'est que loggée.
"""
import logging
from typing import Dict, Optional, Tuple

from fastapi.responses import JSONResponse

from ..bridge.codec import jsonrpc_error, safe_jsonrpc_id
from ..core.constants import (
    JSONRPC_INTERNAL_ERROR,
    JSONRPC_INVALID_REQUEST,
    JSONRPC_SESSION_NOT_FOUND,
    JSONRPC_TIMEOUT,
    JSONRPC_UPSTREAM_UNAVAILABLE,
    RETRY_AFTER_SECONDS,
)
from ..core.exceptions import (
    AuthError,
    BridgeIOError,
    BridgeShutdownError,
    EncodeError,
    LaunchError,
    RequestTimeoutError,
    SessionClosedError,
    SubprocessDiedError,
    WrapperError,
)

logger = logging.getLogger(__name__)

UPSTREAM_UNAVAILABLE = "Upstream MCP server unavailable"

# Ordre significatif: BridgeShutdownError avant SessionClosedError (sous-classe)
_ERROR_MAP: Tuple[Tuple[type, int, int, str], ...] = (
    (EncodeError, 400, JSONRPC_INVALID_REQUEST, "Invalid Request"),
    (BridgeShutdownError, 503, JSONRPC_UPSTREAM_UNAVAILABLE, UPSTREAM_UNAVAILABLE),
    (SessionClosedError, 404, JSONRPC_SESSION_NOT_FOUND, "Session not found"),
    (RequestTimeoutError, 504, JSONRPC_TIMEOUT, "Request timed out"),
    (LaunchError, 503, JSONRPC_UPSTREAM_UNAVAILABLE, UPSTREAM_UNAVAILABLE),
    (SubprocessDiedError, 503, JSONRPC_UPSTREAM_UNAVAILABLE, UPSTREAM_UNAVAILABLE),
    (BridgeIOError, 503, JSONRPC_UPSTREAM_UNAVAILABLE, UPSTREAM_UNAVAILABLE),
)


def classify_error(error: WrapperError) -> Tuple[int, int, str]:
    """Retourne (status HTTP, code JSON-RPC, message client) pour une erreur."""
    for error_type, status, code, message in _ERROR_MAP:
        if isinstance(error, error_type):
            return status, code, message
    return 500, JSONRPC_INTERNAL_ERROR, "Internal error"


def error_response(
    error: WrapperError,
    req_id: object = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Construit la réponse JSON-RPC d'erreur correspondant à `error`."""
    status, code, message = classify_error(error)

    if status >= 500:
        logger.error("❌ Requête MCP en échec (%s): %s", status, error)
    else:
        logger.info("Requête MCP rejetée (%s): %s", status, error)

    response_headers = dict(headers or {})
    if status == 503:
        response_headers["Retry-After"] = str(RETRY_AFTER_SECONDS)

    return JSONResponse(
        content=jsonrpc_error(code=code, message=message, req_id=safe_jsonrpc_id(req_id)),
        status_code=status,
        headers=response_headers,
    )


def protocol_error(code: int, message: str, req_id: object = None, status_code: int = 400) -> JSONResponse:
    """Erreur de protocole côté client (corps illisible, header manquant)."""
    return JSONResponse(
        content=jsonrpc_error(code=code, message=message, req_id=safe_jsonrpc_id(req_id)),
        status_code=status_code,
    )


def auth_error_response(error: AuthError) -> JSONResponse:
    """401 avec un corps minimal et stable."""
    return JSONResponse(
        content={"error": error.message},
        status_code=401,
        headers={"WWW-Authenticate": "Bearer"},
    )
