"""
Exceptions personnalisées pour Portainer MCP Wrapper.

Taxonomie:
- Frontière HTTP: AuthError
- Frontière sous-processus: LaunchError, BridgeIOError, DecodeError, EncodeError,
  RequestTimeoutError, SubprocessDiedError, SessionClosedError (+ BridgeShutdownError)
"""
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ExitStatus


class WrapperError(Exception):
    """Exception de base pour toutes les erreurs du wrapper."""

    def __init__(self, message: str, code: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.code = code or "unknown_error"
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"[{self.code}] {self.message} - Détails: {self.details}"
        return f"[{self.code}] {self.message}"


class ConfigurationError(WrapperError):
    """Erreur de configuration (variable manquante, fichier invalide)."""

    def __init__(self, message: str, config_key: str = None):
        super().__init__(
            message=message,
            code="config_error",
            details={"key": config_key} if config_key else {}
        )


class AuthError(WrapperError):
    """Rejet du credential à la frontière HTTP."""

    def __init__(self, message: str):
        super().__init__(message=message, code="auth_error")


class LaunchError(WrapperError):
    """Le sous-processus n'a pas pu démarrer (binaire absent, permission refusée...)."""

    def __init__(self, reason: str, executable: str = None):
        super().__init__(
            message=f"Impossible de démarrer le sous-processus: {reason}",
            code="launch_error",
            details={"executable": executable} if executable else {}
        )
        self.reason = reason


class BridgeIOError(WrapperError):
    """Échec d'écriture/lecture sur les flux stdio du sous-processus."""

    def __init__(self, message: str, pid: int = None):
        super().__init__(
            message=message,
            code="io_error",
            details={"pid": pid} if pid else {}
        )


class DecodeError(WrapperError):
    """Ligne stdout illisible (JSON invalide, champ de corrélation manquant)."""

    def __init__(self, cause: str, offset: int = 0):
        super().__init__(
            message=f"Ligne JSON-RPC invalide: {cause}",
            code="decode_error",
            details={"offset": offset}
        )
        self.cause = cause
        self.offset = offset


class EncodeError(WrapperError):
    """Message non sérialisable (valeur non finie, type non JSON)."""

    def __init__(self, cause: str):
        super().__init__(
            message=f"Message JSON-RPC non sérialisable: {cause}",
            code="encode_error"
        )
        self.cause = cause


class RequestTimeoutError(WrapperError):
    """Aucune réponse corrélée dans le délai imparti."""

    def __init__(self, timeout_s: float, method: Optional[str] = None):
        super().__init__(
            message=f"Pas de réponse du sous-processus après {timeout_s:g}s",
            code="timeout",
            details={"method": method} if method else {}
        )
        self.timeout_s = timeout_s


class SubprocessDiedError(WrapperError):
    """Le sous-processus s'est terminé alors que des requêtes étaient en vol."""

    def __init__(self, message: str = "Le sous-processus s'est terminé", exit_status: "ExitStatus" = None):
        details = {}
        if exit_status is not None:
            details = {"returncode": exit_status.returncode, "signaled": exit_status.signaled}
        super().__init__(message=message, code="subprocess_died", details=details)
        self.exit_status = exit_status


class SessionClosedError(WrapperError):
    """Requête émise ou résolue après la fermeture de la session."""

    def __init__(self, session_id: str = None, message: str = "Session fermée"):
        super().__init__(
            message=message,
            code="session_closed",
            details={"session_id": session_id} if session_id else {}
        )
        self.session_id = session_id


class BridgeShutdownError(SessionClosedError):
    """Arrêt global du service: toutes les sessions sont évincées."""

    def __init__(self, session_id: str = None):
        super().__init__(session_id=session_id, message="Service en cours d'arrêt")
        self.code = "shutdown"
