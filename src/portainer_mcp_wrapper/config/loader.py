"""portainer_mcp_wrapper.config.loader

Chargement de la configuration.

Sources (priorité croissante):
1. Valeurs par défaut de `Settings`
2. Fichier TOML optionnel (`MCP_WRAPPER_CONFIG`, table `[wrapper]`)
3. Variables d'environnement (noms du wrapper d'origine: PORTAINER_URL, MCP_PORT...)

Note: pas de cache global. L'appelant construit `Settings` une fois et l'injecte.
"""
import os
import re
import tomllib
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from ..core.exceptions import ConfigurationError
from .settings import Settings

CONFIG_FILE_ENV = "MCP_WRAPPER_CONFIG"
CONFIG_TABLE = "wrapper"

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}


def _parse_str(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    value = str(raw).strip()
    return value or None


def _parse_int(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def _parse_float(raw: Any) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    try:
        return float(str(raw).strip())
    except (TypeError, ValueError):
        return None


def _parse_bool(raw: Any) -> Optional[bool]:
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


# Variable d'environnement -> (champ Settings, parser)
ENV_VARS: Dict[str, Tuple[str, Callable[[Any], Any]]] = {
    "PORTAINER_URL": ("portainer_url", _parse_str),
    "PORTAINER_API_TOKEN": ("portainer_api_token", _parse_str),
    "MCP_ACCESS_TOKEN": ("mcp_access_token", _parse_str),
    "MCP_PORT": ("mcp_port", _parse_int),
    "MCP_HOST": ("mcp_host", _parse_str),
    "MCP_TOOLS_FILE": ("mcp_tools_file", _parse_str),
    "DISABLE_VERSION_CHECK": ("disable_version_check", _parse_bool),
    "READ_ONLY_MODE": ("read_only_mode", _parse_bool),
    "MCP_BINARY_PATH": ("mcp_binary_path", _parse_str),
    "MCP_SUBPROCESS_MODE": ("subprocess_mode", _parse_str),
    "MCP_EAGER_START": ("eager_start", _parse_bool),
    "MCP_REQUEST_TIMEOUT": ("request_timeout", _parse_float),
    "MCP_SESSION_TIMEOUT": ("session_timeout", _parse_float),
    "MCP_SESSION_DRAIN_TIMEOUT": ("session_drain_timeout", _parse_float),
    "MCP_SHUTDOWN_GRACE": ("shutdown_grace", _parse_float),
    "MCP_KILL_TIMEOUT": ("kill_timeout", _parse_float),
    "MCP_RESTART_MAX_ATTEMPTS": ("restart_max_attempts", _parse_int),
    "MCP_RESTART_BACKOFF": ("restart_backoff", _parse_float),
    "MCP_STDIO_STREAM_LIMIT": ("stdio_stream_limit", _parse_int),
    "MCP_STREAM_QUEUE_MAX": ("stream_queue_max", _parse_int),
    "MCP_SSE_KEEPALIVE": ("sse_keepalive", _parse_float),
    "LOG_LEVEL": ("log_level", _parse_str),
}

_PARSERS: Dict[str, Callable[[Any], Any]] = {field: parser for field, parser in ENV_VARS.values()}


def _expand_env_vars(obj: Any, environ: Mapping[str, str]) -> Any:
    """
    Récursivement étend les variables d'environnement ${VAR} dans la config.

    Args:
        obj: Valeur à traiter (str, dict, list)
        environ: Environnement utilisé pour l'expansion

    Returns:
        Valeur avec variables d'environnement expansées
    """
    if isinstance(obj, str):
        def replace_env_var(match):
            return environ.get(match.group(1), match.group(0))
        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v, environ) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item, environ) for item in obj]
    return obj


def load_toml_config(config_path: str, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Charge la table `[wrapper]` d'un fichier TOML.

    Raises:
        ConfigurationError: Si le fichier n'existe pas ou est invalide
    """
    environ = os.environ if environ is None else environ
    path = Path(config_path).expanduser()
    if not path.exists():
        raise ConfigurationError(
            message=f"Fichier de configuration non trouvé: {config_path}",
            config_key="config_path"
        )

    try:
        with open(path, "rb") as f:
            raw_config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(
            message=f"Fichier de configuration invalide ({config_path}): {e}",
            config_key="config_path"
        ) from e

    table = raw_config.get(CONFIG_TABLE, {})
    if not isinstance(table, dict):
        raise ConfigurationError(
            message=f"La section [{CONFIG_TABLE}] doit être une table",
            config_key=CONFIG_TABLE
        )
    return _expand_env_vars(table, environ)


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    config_path: Optional[str] = None,
) -> Settings:
    """
    Construit la configuration du wrapper.

    Les valeurs illisibles (entier/booléen mal formé) retombent sur la valeur
    par défaut, comme le wrapper d'origine.

    Args:
        environ: Environnement (défaut: os.environ)
        config_path: Fichier TOML (défaut: $MCP_WRAPPER_CONFIG)

    Returns:
        Settings immuable

    Raises:
        ConfigurationError: Token manquant, mode inconnu ou fichier invalide
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    config_path = config_path or environ.get(CONFIG_FILE_ENV)
    if config_path:
        for key, raw in load_toml_config(config_path, environ).items():
            parser = _PARSERS.get(key)
            if parser is None:
                continue
            parsed = parser(raw)
            if parsed is not None:
                values[key] = parsed

    for env_name, (key, parser) in ENV_VARS.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        parsed = parser(raw)
        if parsed is not None:
            values[key] = parsed

    values.setdefault("portainer_api_token", "")
    values.setdefault("mcp_access_token", "")
    return Settings.from_dict(values)
