"""
Router principal de l'API.
"""
from fastapi import APIRouter

from .routes import health, mcp

# Router principal
api_router = APIRouter()

# Liveness sans authentification
api_router.include_router(health.router, prefix="", tags=["health"])

# Endpoint MCP (Bearer requis)
api_router.include_router(mcp.router, prefix="", tags=["mcp"])
