"""
Dataclass de configuration du wrapper.

Immuable pour toute la durée de vie du process: construite une fois par
`load_settings()` puis injectée dans l'app (app.state.settings) et le bridge.
"""
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional

from ..core.constants import (
    ARG_API_TOKEN,
    ARG_DISABLE_VERSION_CHECK,
    ARG_READ_ONLY,
    ARG_SERVER,
    ARG_TOOLS_FILE,
    DEFAULT_KILL_TIMEOUT,
    DEFAULT_MCP_BINARY_PATH,
    DEFAULT_MCP_HOST,
    DEFAULT_MCP_PORT,
    DEFAULT_PORTAINER_URL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RESTART_BACKOFF,
    DEFAULT_RESTART_MAX_ATTEMPTS,
    DEFAULT_SESSION_DRAIN_TIMEOUT,
    DEFAULT_SESSION_TIMEOUT,
    DEFAULT_SHUTDOWN_GRACE,
    DEFAULT_SSE_KEEPALIVE,
    DEFAULT_STDIO_STREAM_LIMIT,
    DEFAULT_STREAM_QUEUE_MAX,
    MAX_STDIO_STREAM_LIMIT,
    MIN_STDIO_STREAM_LIMIT,
    SUBPROCESS_MODE_PER_SESSION,
    SUBPROCESS_MODE_SHARED,
    SUBPROCESS_MODES,
)
from ..core.exceptions import ConfigurationError


@dataclass(frozen=True)
class Settings:
    """Configuration globale du wrapper."""
    # Portainer / sous-processus
    portainer_api_token: str
    mcp_access_token: str
    portainer_url: str = DEFAULT_PORTAINER_URL
    mcp_tools_file: Optional[str] = None
    disable_version_check: bool = False
    read_only_mode: bool = False
    mcp_binary_path: str = DEFAULT_MCP_BINARY_PATH

    # Serveur HTTP
    mcp_host: str = DEFAULT_MCP_HOST
    mcp_port: int = DEFAULT_MCP_PORT
    log_level: str = "INFO"

    # Bridge
    subprocess_mode: str = SUBPROCESS_MODE_SHARED
    eager_start: bool = False
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    session_timeout: float = DEFAULT_SESSION_TIMEOUT
    session_drain_timeout: float = DEFAULT_SESSION_DRAIN_TIMEOUT
    shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    restart_max_attempts: int = DEFAULT_RESTART_MAX_ATTEMPTS
    restart_backoff: float = DEFAULT_RESTART_BACKOFF
    stdio_stream_limit: int = DEFAULT_STDIO_STREAM_LIMIT
    stream_queue_max: int = DEFAULT_STREAM_QUEUE_MAX
    sse_keepalive: float = DEFAULT_SSE_KEEPALIVE

    def __post_init__(self):
        if not self.portainer_api_token:
            raise ConfigurationError("PORTAINER_API_TOKEN is required", config_key="portainer_api_token")
        if not self.mcp_access_token:
            raise ConfigurationError("MCP_ACCESS_TOKEN is required", config_key="mcp_access_token")
        if not self.mcp_binary_path:
            raise ConfigurationError("MCP_BINARY_PATH ne peut pas être vide", config_key="mcp_binary_path")
        if self.subprocess_mode not in SUBPROCESS_MODES:
            raise ConfigurationError(
                f"Mode de sous-processus inconnu: {self.subprocess_mode} "
                f"(attendu: {', '.join(sorted(SUBPROCESS_MODES))})",
                config_key="subprocess_mode"
            )
        # Borne la taille de ligne stdio (évite LimitOverrun silencieux et OOM)
        limit = self.stdio_stream_limit
        if limit <= 0:
            limit = DEFAULT_STDIO_STREAM_LIMIT
        object.__setattr__(
            self, "stdio_stream_limit", min(MAX_STDIO_STREAM_LIMIT, max(MIN_STDIO_STREAM_LIMIT, limit))
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Crée une instance depuis un dictionnaire (clés inconnues ignorées)."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    @property
    def shared_subprocess(self) -> bool:
        return self.subprocess_mode == SUBPROCESS_MODE_SHARED

    @property
    def per_session_subprocess(self) -> bool:
        return self.subprocess_mode == SUBPROCESS_MODE_PER_SESSION

    def subprocess_args(self) -> List[str]:
        """Construit le vecteur d'arguments (liste blanche) passé à portainer-mcp.

        Rien ne provient des requêtes HTTP: uniquement de la configuration.
        """
        args = [
            ARG_SERVER, self.portainer_url,
            ARG_API_TOKEN, self.portainer_api_token,
        ]
        if self.mcp_tools_file:
            args.extend([ARG_TOOLS_FILE, self.mcp_tools_file])
        if self.disable_version_check:
            args.append(ARG_DISABLE_VERSION_CHECK)
        if self.read_only_mode:
            args.append(ARG_READ_ONLY)
        return args

