"""
Portainer MCP Wrapper.

Bridge HTTP/SSE authentifié vers le serveur MCP Portainer (JSON-RPC sur stdio).
"""

__version__ = "1.0.0"
