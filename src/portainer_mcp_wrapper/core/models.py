"""
Dataclasses métier pour Portainer MCP Wrapper.
"""
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set


class SubprocessState(str, Enum):
    """Cycle de vie d'un sous-processus MCP."""
    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"
    FAILED = "failed"


class SessionState(str, Enum):
    """Cycle de vie d'une session: Idle -> Active -> Closing -> Closed."""
    IDLE = "idle"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class ExitStatus:
    """Statut de fin d'un sous-processus."""
    returncode: Optional[int]
    # True si la fin a été provoquée par un signal (terminate/kill ou signal externe)
    signaled: bool = False

    @property
    def natural(self) -> bool:
        return not self.signaled


@dataclass
class Session:
    """Représente une connexion client logique (header Mcp-Session-Id)."""
    id: str
    # Clé de lookup du sous-processus lié (pas de possession)
    process_key: str
    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)
    in_flight: int = 0
    closing: bool = False
    closed: bool = False
    streams: Set["asyncio.Queue[Any]"] = field(default_factory=set)
    drained: asyncio.Event = field(default_factory=asyncio.Event)

    def __post_init__(self):
        self.drained.set()

    @property
    def state(self) -> SessionState:
        if self.closed:
            return SessionState.CLOSED
        if self.closing:
            return SessionState.CLOSING
        if self.in_flight or self.streams:
            return SessionState.ACTIVE
        return SessionState.IDLE

    @property
    def is_open(self) -> bool:
        return not (self.closing or self.closed)

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def idle_for(self, now: Optional[float] = None) -> float:
        """Secondes écoulées depuis la dernière activité."""
        return (now if now is not None else time.monotonic()) - self.last_activity

    def begin_request(self) -> None:
        self.in_flight += 1
        self.drained.clear()
        self.touch()

    def end_request(self) -> None:
        self.in_flight = max(0, self.in_flight - 1)
        self.touch()
        if self.in_flight == 0:
            self.drained.set()

    def to_dict(self) -> Dict[str, Any]:
        """Convertit la session en dictionnaire (debug/logs)."""
        return {
            "id": self.id,
            "process_key": self.process_key,
            "state": self.state.value,
            "in_flight": self.in_flight,
            "streams": len(self.streams),
            "idle_seconds": round(self.idle_for(), 1),
        }


@dataclass
class PendingRequest:
    """Requête transmise au sous-processus en attente de sa réponse corrélée."""
    # id JSON-RPC réellement écrit sur stdin (unique pour tout le bridge)
    correlation_id: int
    session_id: str
    process_key: str
    # id fourni par le client, restauré sur la réponse
    original_id: Any
    future: "asyncio.Future[Dict[str, Any]]"
    method: Optional[str] = None
    submitted_at: float = field(default_factory=time.monotonic)
