"""
Constantes globales pour Portainer MCP Wrapper.
"""

# ============================================================================
# IDENTITÉ DU SERVICE
# ============================================================================
SERVICE_NAME = "portainer-mcp-wrapper"
SERVICE_VERSION = "1.0.0"

# ============================================================================
# CONFIGURATION PAR DÉFAUT (variables d'environnement du wrapper)
# ============================================================================
DEFAULT_PORTAINER_URL = "http://portainer:9000"
DEFAULT_MCP_PORT = 8080
DEFAULT_MCP_HOST = "0.0.0.0"
DEFAULT_MCP_BINARY_PATH = "/app/portainer-mcp"

# ============================================================================
# BRIDGE STDIO
# ============================================================================
SUBPROCESS_MODE_SHARED = "shared"
SUBPROCESS_MODE_PER_SESSION = "per_session"
SUBPROCESS_MODES = frozenset({SUBPROCESS_MODE_SHARED, SUBPROCESS_MODE_PER_SESSION})

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_SESSION_TIMEOUT = 300.0  # 5 minutes
DEFAULT_SESSION_DRAIN_TIMEOUT = 5.0
DEFAULT_SHUTDOWN_GRACE = 5.0  # stdin fermé -> SIGTERM
DEFAULT_KILL_TIMEOUT = 3.0  # SIGTERM -> SIGKILL
DEFAULT_RESTART_MAX_ATTEMPTS = 3
DEFAULT_RESTART_BACKOFF = 0.5
MAX_RESTART_BACKOFF = 10.0
DEFAULT_STREAM_QUEUE_MAX = 1000
DEFAULT_SSE_KEEPALIVE = 15.0

# asyncio limite readline() à 64 KiB par défaut; certaines réponses MCP
# (listes de conteneurs, stacks) tiennent sur une seule ligne bien plus longue.
DEFAULT_STDIO_STREAM_LIMIT = 8 * 1024 * 1024  # 8 MiB
MIN_STDIO_STREAM_LIMIT = 64 * 1024
MAX_STDIO_STREAM_LIMIT = 64 * 1024 * 1024  # 64 MiB

# ============================================================================
# ARGUMENTS DU SOUS-PROCESSUS (liste blanche)
# ============================================================================
ARG_SERVER = "--server"
ARG_API_TOKEN = "--api-token"
ARG_TOOLS_FILE = "--tools-file"
ARG_DISABLE_VERSION_CHECK = "--disable-version-check"
ARG_READ_ONLY = "--read-only"

# Flags qui attendent une valeur juste après eux
VALUE_FLAGS = frozenset({ARG_SERVER, ARG_API_TOKEN, ARG_TOOLS_FILE})
# Flags dont la valeur ne doit jamais apparaître dans les logs
SECRET_FLAGS = frozenset({ARG_API_TOKEN})

# ============================================================================
# HTTP / MCP STREAMABLE
# ============================================================================
SESSION_HEADER = "Mcp-Session-Id"
RETRY_AFTER_SECONDS = 5

# Codes JSON-RPC exposés au client
JSONRPC_PARSE_ERROR = -32700
JSONRPC_INVALID_REQUEST = -32600
JSONRPC_INTERNAL_ERROR = -32603
JSONRPC_SESSION_NOT_FOUND = -32001
JSONRPC_TIMEOUT = -32002
JSONRPC_UPSTREAM_UNAVAILABLE = -32003
