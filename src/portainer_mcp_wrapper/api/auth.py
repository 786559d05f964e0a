"""
Authentification Bearer de l'endpoint MCP.

Header attendu: `Authorization: Bearer <MCP_ACCESS_TOKEN>` (schéma sensible à la casse).
Le rejet est levé en AuthError, converti en 401 + `{"error": ...}` par l'app.
"""
import hmac
from typing import Optional

from fastapi import Request

from ..core.exceptions import AuthError


def verify_bearer(authorization: Optional[str], expected_token: str) -> None:
    """
    Valide la présence et la forme du header Authorization.

    Raises:
        AuthError: header manquant, format invalide ou token incorrect
    """
    if not authorization:
        raise AuthError("missing authorization header")

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0] != "Bearer":
        raise AuthError("invalid authorization format")

    if not hmac.compare_digest(parts[1].encode("utf-8"), expected_token.encode("utf-8")):
        raise AuthError("invalid token")


async def require_bearer_token(request: Request) -> None:
    """Dépendance FastAPI: exécutée avant tout accès au bridge."""
    settings = request.app.state.settings
    verify_bearer(request.headers.get("Authorization"), settings.mcp_access_token)
