"""
Couche API FastAPI du Portainer MCP Wrapper.
"""

from .router import api_router

__all__ = ["api_router"]
