"""
Routes API par domaine.
"""

from . import health
from . import mcp

__all__ = [
    "health",
    "mcp",
]
