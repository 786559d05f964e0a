"""portainer_mcp_wrapper.bridge.codec

Codec JSON-RPC "une ligne = un message" pour le protocole stdio MCP.

- encode: JSON compact sur une seule ligne + exactement un `\\n`
- decode: une ligne -> un objet JSON-RPC (dict), lignes vides ignorées

Ce module est **sans I/O**: le réassemblage des lignes découpées entre
plusieurs lectures est fait par le StreamReader du sous-processus.
"""

from __future__ import annotations

import json
import math
from typing import Any

from ..core.exceptions import DecodeError, EncodeError

Message = dict[str, Any]

JSONRPC_VERSION = "2.0"


def encode(message: Message) -> bytes:
    """Sérialise un message en une ligne JSON terminée par `\\n`.

    Raises:
        EncodeError: valeur non représentable (NaN/Infinity, type non JSON,
            clé non textuelle, tuple, surrogate isolé).
            Aucun effet de bord: l'erreur est levée avant toute I/O.
    """

    if not isinstance(message, dict):
        raise EncodeError(f"objet JSON attendu, reçu {type(message).__name__}")

    try:
        _reject_coercions(message)
        text = json.dumps(message, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
        # Surrogate isolé: UnicodeEncodeError (sous-classe de ValueError)
        data = text.encode("utf-8")
    except ValueError as e:
        # allow_nan=False: on rejette plutôt que d'émettre NaN (JSON invalide)
        raise EncodeError(str(e)) from e
    except TypeError as e:
        raise EncodeError(str(e)) from e
    except RecursionError as e:
        raise EncodeError("structure trop profonde") from e

    # json.dumps échappe \n dans les chaînes; seuls U+2028/U+2029 pourraient
    # surprendre un lecteur "splitlines", pas un lecteur basé sur \n.
    return data + b"\n"


def decode(line: bytes | str, *, expect_id: bool = False) -> Message | None:
    """Parse une ligne stdout en message JSON-RPC.

    Args:
        line: ligne brute (avec ou sans `\\n` final)
        expect_id: exige un champ `id` (réponse corrélée attendue)

    Returns:
        Le message, ou None pour une ligne vide (keep-alive toléré).

    Raises:
        DecodeError: JSON invalide ou trop profond, non-objet, ou id manquant
            sur une réponse.
    """

    if isinstance(line, bytes):
        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"UTF-8 invalide: {e.reason}", offset=e.start) from e
    else:
        text = line

    if not text.strip():
        return None

    try:
        obj = json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise DecodeError(e.msg, offset=e.pos) from e
    except ValueError as e:
        raise DecodeError(str(e)) from e
    except RecursionError as e:
        raise DecodeError("structure trop profonde") from e

    if not isinstance(obj, dict):
        raise DecodeError(f"objet JSON-RPC attendu, reçu {type(obj).__name__}")

    if (expect_id or is_response(obj)) and "id" not in obj:
        raise DecodeError("champ 'id' manquant")

    return obj


def _reject_constant(name: str) -> Any:
    raise ValueError(f"constante non JSON: {name}")


def _reject_coercions(value: Any) -> None:
    # json.dumps convertirait silencieusement clés non textuelles et tuples:
    # decode(encode(m)) ne redonnerait pas m.
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"clé non textuelle: {key!r}")
            _reject_coercions(item)
    elif isinstance(value, list):
        for item in value:
            _reject_coercions(item)
    elif isinstance(value, tuple):
        raise TypeError("tuple non représentable tel quel (liste attendue)")


def _is_finite_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def is_request(obj: object) -> bool:
    """Requête JSON-RPC: `method` + `id` non nul (réponse attendue)."""
    return isinstance(obj, dict) and isinstance(obj.get("method"), str) and obj.get("id") is not None


def is_notification(obj: object) -> bool:
    return isinstance(obj, dict) and isinstance(obj.get("method"), str) and obj.get("id") is None


def is_response(obj: object) -> bool:
    return isinstance(obj, dict) and "method" not in obj and ("result" in obj or "error" in obj)


def safe_jsonrpc_id(req_id: object | None) -> str | int | float | None:
    # JSON-RPC 2.0: id is string | number | null.
    if req_id is None:
        return None
    if isinstance(req_id, str) or _is_finite_number(req_id):
        return req_id
    return None


def with_id(message: Message, new_id: object) -> Message:
    """Copie superficielle du message avec un autre `id` (pas de mutation)."""
    rewritten: Message = dict(message)
    rewritten["id"] = new_id
    return rewritten


def jsonrpc_error(*, code: int, message: str, req_id: object | None, data: object | None = None) -> Message:
    error: dict[str, object] = {"code": int(code), "message": message}
    if data is not None:
        error["data"] = data
    return {
        "jsonrpc": JSONRPC_VERSION,
        "error": error,
        "id": req_id,
    }
