"""portainer_mcp_wrapper.bridge.multiplexer

Table des sessions et table de corrélation des requêtes en vol.

Le protocole stdio n'a pas de notion de session: une réponse n'est identifiée
que par son `id`. Plusieurs sessions partageant un même sous-processus peuvent
choisir les mêmes ids, donc chaque requête reçoit un id "fil" unique pour tout
le bridge; l'id d'origine est restauré sur la réponse.

Toutes les opérations sont synchrones (aucun `await`): sur la boucle asyncio
elles sont atomiques vis-à-vis des autres tâches.
"""

from __future__ import annotations

import itertools
import logging
import secrets
from typing import Any, Callable, Iterator, Optional

from ..core.exceptions import SessionClosedError, WrapperError
from ..core.models import PendingRequest, Session

logger = logging.getLogger(__name__)


class SessionMultiplexer:
    """Route les réponses du sous-processus vers la session qui a émis la requête."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._pending: dict[int, PendingRequest] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def register(self, process_key: Optional[str] = None) -> str:
        """Crée une session et retourne son identifiant.

        L'identifiant provient de `secrets` (non devinable): il peut servir de
        capacité d'accès à la session.

        Args:
            process_key: clé du sous-processus lié (None: un par session)
        """

        session_id = secrets.token_urlsafe(24)
        while session_id in self._sessions:
            session_id = secrets.token_urlsafe(24)

        self._sessions[session_id] = Session(
            id=session_id,
            process_key=process_key or f"session:{session_id}",
        )
        logger.debug("Session %s enregistrée", _short(session_id))
        return session_id

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def sessions_for(self, process_key: str) -> list[Session]:
        return [s for s in self._sessions.values() if s.process_key == process_key]

    def allocate_id(self) -> int:
        """Réserve un id fil unique (sans rien enregistrer)."""
        return next(self._ids)

    def correlate(self, session_id: str, pending: PendingRequest) -> None:
        """Associe une requête en vol à sa session.

        Raises:
            SessionClosedError: session inconnue, en fermeture ou fermée
        """

        session = self._sessions.get(session_id)
        if session is None or not session.is_open:
            raise SessionClosedError(session_id)
        if pending.correlation_id in self._pending:
            raise ValueError(f"id de corrélation déjà utilisé: {pending.correlation_id}")
        self._pending[pending.correlation_id] = pending

    def resolve(self, correlation_id: Any, response: dict[str, Any]) -> bool:
        """Délivre une réponse à sa requête en vol (au plus une fois).

        L'id d'origine du client est restauré sur une copie de la réponse.

        Returns:
            True si délivrée; False si id inconnu, tardif ou dupliqué (ignoré).
        """

        pending = self._pending.pop(correlation_id, None) if _hashable(correlation_id) else None
        if pending is None:
            logger.info("Réponse ignorée: id %r inconnu ou déjà résolu", correlation_id)
            return False

        if pending.future.done():
            # Waiter parti (timeout / annulation) entre-temps
            logger.debug("Réponse tardive pour id %r (requête abandonnée)", correlation_id)
            return False

        restored = dict(response)
        restored["id"] = pending.original_id
        pending.future.set_result(restored)
        return True

    def discard(self, correlation_id: int) -> Optional[PendingRequest]:
        """Retire une requête en vol sans la résoudre (timeout, annulation)."""
        return self._pending.pop(correlation_id, None)

    def evict(self, session_id: str, make_error: Optional[Callable[[], WrapperError]] = None) -> Optional[Session]:
        """Retire la session et échoue toutes ses requêtes en vol.

        Idempotent: une session déjà évincée ou inconnue est un no-op.

        Returns:
            La session évincée, ou None.
        """

        session = self._sessions.pop(session_id, None)
        if session is None:
            return None

        session.closing = True
        session.closed = True
        failed = self._fail_where(
            lambda p: p.session_id == session_id,
            make_error or (lambda: SessionClosedError(session_id)),
        )
        if failed:
            logger.info("Session %s évincée: %d requête(s) en vol échouée(s)", _short(session_id), failed)
        else:
            logger.debug("Session %s évincée", _short(session_id))
        return session

    def fail_process(self, process_key: str, make_error: Callable[[], WrapperError]) -> int:
        """Échoue toutes les requêtes en vol d'un sous-processus.

        Args:
            make_error: fabrique d'exception (une instance par requête)

        Returns:
            Nombre de requêtes échouées.
        """
        return self._fail_where(lambda p: p.process_key == process_key, make_error)

    def _fail_where(self, predicate, make_error) -> int:
        matching = [cid for cid, p in self._pending.items() if predicate(p)]
        failed = 0
        for cid in matching:
            pending = self._pending.pop(cid)
            if not pending.future.done():
                pending.future.set_exception(make_error())
                failed += 1
        return failed


def _hashable(value: Any) -> bool:
    return isinstance(value, (int, str, float)) and not isinstance(value, bool)


def _short(session_id: str) -> str:
    # Ne logge jamais l'id complet (capacité d'accès)
    return f"{session_id[:8]}…"
