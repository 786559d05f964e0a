"""
Cœur du Portainer MCP Wrapper.
Modules indépendants sans dépendances externes au package.
"""

from .exceptions import (
    WrapperError,
    ConfigurationError,
    AuthError,
    LaunchError,
    BridgeIOError,
    DecodeError,
    EncodeError,
    RequestTimeoutError,
    SubprocessDiedError,
    SessionClosedError,
    BridgeShutdownError,
)
from .models import (
    ExitStatus,
    PendingRequest,
    Session,
    SessionState,
    SubprocessState,
)

__all__ = [
    # Exceptions
    "WrapperError",
    "ConfigurationError",
    "AuthError",
    "LaunchError",
    "BridgeIOError",
    "DecodeError",
    "EncodeError",
    "RequestTimeoutError",
    "SubprocessDiedError",
    "SessionClosedError",
    "BridgeShutdownError",
    # Modèles
    "ExitStatus",
    "PendingRequest",
    "Session",
    "SessionState",
    "SubprocessState",
]
