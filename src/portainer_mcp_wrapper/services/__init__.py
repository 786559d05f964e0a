"""
Services d'arrière-plan du Portainer MCP Wrapper.
"""

from .session_reaper import SessionReaperConfig, SessionReaperService, create_session_reaper

__all__ = [
    "SessionReaperConfig",
    "SessionReaperService",
    "create_session_reaper",
]
