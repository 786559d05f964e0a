"""
Configuration du Portainer MCP Wrapper.
"""

from .loader import load_settings, load_toml_config
from .settings import Settings

__all__ = [
    "load_settings",
    "load_toml_config",
    "Settings",
]
