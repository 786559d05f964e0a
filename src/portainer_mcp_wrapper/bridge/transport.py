"""portainer_mcp_wrapper.bridge.transport

Transport Bridge: orchestre requête HTTP -> stdin du sous-processus -> réponse.

Flux:
    session -> encode (id fil) -> stdin
    stdout -> decode -> réponse corrélée (resolve) ou notification -> flux SSE

Modes de sous-processus:
- shared: un seul portainer-mcp pour toutes les sessions (défaut)
- per_session: un portainer-mcp dédié par session, arrêté à la fermeture

Important:
- Un seul lecteur stdout par sous-processus (préserve l'ordre des lignes)
- Un timeout n'arrête pas le sous-processus; seule sa mort échoue les requêtes
- Après un redémarrage, rien n'est rejoué: l'appelant doit renvoyer sa requête
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Optional

from ..config.settings import Settings
from ..core.constants import MAX_RESTART_BACKOFF
from ..core.exceptions import (
    BridgeIOError,
    BridgeShutdownError,
    DecodeError,
    LaunchError,
    RequestTimeoutError,
    SessionClosedError,
    SubprocessDiedError,
)
from ..core.models import ExitStatus, PendingRequest, Session
from .codec import Message, decode, encode, is_response, with_id
from .multiplexer import SessionMultiplexer
from .process import SubprocessHandle, SubprocessManager

logger = logging.getLogger(__name__)

SHARED_PROCESS_KEY = "shared"

# Sentinelle de fin de flux SSE
_STREAM_CLOSED = object()


@dataclass
class ProcessBinding:
    """Emplacement d'un sous-processus (partagé ou dédié) et de son lecteur stdout."""

    key: str
    handle: Optional[SubprocessHandle] = None
    # Clé de l'incarnation courante: les requêtes en vol y sont rattachées
    incarnation: str = ""
    generation: int = 0
    reader: Optional["asyncio.Task[None]"] = None
    consecutive_failures: int = 0
    last_failure: float = 0.0
    closed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def running(self) -> bool:
        return self.handle is not None and self.handle.running


class TransportBridge:
    """Pont HTTP/SSE <-> sous-processus JSON-RPC stdio."""

    def __init__(
        self,
        settings: Settings,
        *,
        manager: Optional[SubprocessManager] = None,
        multiplexer: Optional[SessionMultiplexer] = None,
    ) -> None:
        self._settings = settings
        self._manager = manager or SubprocessManager(
            stream_limit=settings.stdio_stream_limit,
            shutdown_grace=settings.shutdown_grace,
            kill_timeout=settings.kill_timeout,
        )
        self._mux = multiplexer or SessionMultiplexer()
        self._bindings: dict[str, ProcessBinding] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def multiplexer(self) -> SessionMultiplexer:
        return self._mux

    @property
    def manager(self) -> SubprocessManager:
        return self._manager

    @property
    def closed(self) -> bool:
        return self._closed

    def binding(self, key: str) -> Optional[ProcessBinding]:
        return self._bindings.get(key)

    # ------------------------------------------------------------------
    # Cycle de vie
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Démarre le sous-processus partagé si `eager_start` est activé."""

        if not (self._settings.eager_start and self._settings.shared_subprocess):
            return
        try:
            await self._ensure_running(self._binding_for(SHARED_PROCESS_KEY))
        except LaunchError as e:
            # Le service reste disponible: nouvel essai à la première requête
            logger.error("❌ Démarrage anticipé de portainer-mcp impossible: %s", e)

    async def shutdown(self) -> None:
        """Arrêt global: évince les sessions puis arrête les sous-processus.

        Les requêtes en vol se terminent en BridgeShutdownError (503 côté HTTP).
        """

        if self._closed:
            return
        self._closed = True

        sessions = list(self._mux)
        for session in sessions:
            self._mux.evict(session.id, lambda sid=session.id: BridgeShutdownError(sid))
            self._close_streams(session)
        if sessions:
            logger.info("Arrêt: %d session(s) évincée(s)", len(sessions))

        bindings = list(self._bindings.values())
        for binding in bindings:
            binding.closed = True

        await self._manager.terminate_all()

        readers = [b.reader for b in bindings if b.reader is not None]
        await _await_tasks(readers, timeout=1.0)
        await _await_tasks(list(self._tasks), timeout=1.0)
        self._bindings.clear()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def open_session(self) -> Session:
        """Enregistre une nouvelle session liée au sous-processus selon le mode."""

        if self._closed:
            raise BridgeShutdownError()
        key = SHARED_PROCESS_KEY if self._settings.shared_subprocess else None
        session_id = self._mux.register(key)
        return self._mux.get(session_id)

    def get_session(self, session_id: Optional[str]) -> Session:
        """Retourne une session ouverte.

        Raises:
            BridgeShutdownError: service en cours d'arrêt
            SessionClosedError: session inconnue, en fermeture ou fermée
        """

        if self._closed:
            raise BridgeShutdownError(session_id)
        session = self._mux.get(session_id)
        if session is None or not session.is_open:
            raise SessionClosedError(session_id)
        return session

    async def close_session(self, session_id: str, *, reason: str = "client") -> bool:
        """Ferme une session: Closing (drain borné) puis Closed (éviction).

        Idempotent: une session inconnue ou déjà en fermeture est un no-op.

        Returns:
            True si cet appel a fermé la session.
        """

        session = self._mux.get(session_id)
        if session is None or not session.is_open:
            return False

        session.closing = True
        logger.info("Fermeture de session %s… (%s)", session.id[:8], reason)

        if session.in_flight:
            try:
                await asyncio.wait_for(session.drained.wait(), timeout=self._settings.session_drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Session fermée avec %d requête(s) encore en vol après %.1fs",
                    session.in_flight, self._settings.session_drain_timeout,
                )

        self._mux.evict(session_id)
        self._close_streams(session)

        if self._settings.per_session_subprocess:
            binding = self._bindings.pop(session.process_key, None)
            if binding is not None:
                await self._close_binding(binding)
        return True

    async def reap_idle_sessions(self, now: Optional[float] = None) -> int:
        """Ferme les sessions inactives depuis plus de `session_timeout`.

        Une session avec requête en vol ou flux SSE ouvert n'est jamais inactive.
        """

        now = now if now is not None else time.monotonic()
        timeout = self._settings.session_timeout
        expired = [
            s.id for s in self._mux
            if s.is_open and not s.in_flight and not s.streams and s.idle_for(now) >= timeout
        ]
        closed = 0
        for session_id in expired:
            if await self.close_session(session_id, reason="idle"):
                closed += 1
        return closed

    # ------------------------------------------------------------------
    # Requêtes
    # ------------------------------------------------------------------

    async def handle_request(self, session_id: str, message: Message) -> Message:
        """Transmet une requête et attend la réponse corrélée.

        Returns:
            La réponse du sous-processus, avec l'id d'origine du client.

        Raises:
            EncodeError: message non sérialisable (aucune I/O effectuée)
            RequestTimeoutError: pas de réponse dans `request_timeout`
            SubprocessDiedError: sous-processus mort pendant l'attente
            LaunchError: sous-processus impossible à (re)démarrer
            SessionClosedError: session fermée avant ou pendant l'attente
        """

        session = self.get_session(session_id)
        wire_id = self._mux.allocate_id()
        data = encode(with_id(message, wire_id))
        method = message.get("method")

        session.begin_request()
        try:
            binding = self._binding_for(session.process_key)
            handle, incarnation = await self._ensure_running(binding)

            future: asyncio.Future[Message] = asyncio.get_running_loop().create_future()
            self._mux.correlate(session.id, PendingRequest(
                correlation_id=wire_id,
                session_id=session.id,
                process_key=incarnation,
                original_id=message.get("id"),
                future=future,
                method=method,
            ))

            try:
                await handle.write_line(data)
            except BridgeIOError as e:
                self._on_write_failure(binding, handle, incarnation, e)

            try:
                return await asyncio.wait_for(future, timeout=self._settings.request_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "⏱️ Timeout %s (id fil %s) après %.1fs",
                    method, wire_id, self._settings.request_timeout,
                )
                raise RequestTimeoutError(self._settings.request_timeout, method) from None
        finally:
            # No-op si déjà résolue/échouée: la table revient toujours à sa taille de base
            self._mux.discard(wire_id)
            session.end_request()

    async def send_message(self, session_id: str, message: Message) -> None:
        """Transmet un message sans attendre de réponse (notification, réponse client)."""

        session = self.get_session(session_id)
        data = encode(message)
        session.touch()

        binding = self._binding_for(session.process_key)
        handle, incarnation = await self._ensure_running(binding)
        try:
            await handle.write_line(data)
        except BridgeIOError as e:
            self._on_write_failure(binding, handle, incarnation, e)
            raise SubprocessDiedError(f"Écriture impossible vers le sous-processus: {e.message}") from e

    def open_stream(self, session_id: str) -> AsyncIterator[Optional[Message]]:
        """Ouvre le canal server-push d'une session.

        Reçoit, dans l'ordre d'arrivée, chaque message stdout non réclamé par une
        requête en vol (notifications, requêtes serveur). Produit None à chaque
        intervalle de keep-alive sans message.

        Raises:
            SessionClosedError: session inconnue ou fermée
        """

        session = self.get_session(session_id)
        queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max(1, self._settings.stream_queue_max))
        session.streams.add(queue)
        session.touch()
        return self._iterate_stream(session, queue)

    async def _iterate_stream(self, session: Session, queue: "asyncio.Queue[Any]") -> AsyncIterator[Optional[Message]]:
        keepalive = self._settings.sse_keepalive
        try:
            while True:
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield None
                    continue
                if item is _STREAM_CLOSED:
                    return
                session.touch()
                yield item
        finally:
            session.streams.discard(queue)
            session.touch()

    # ------------------------------------------------------------------
    # Sous-processus
    # ------------------------------------------------------------------

    def _binding_for(self, key: str) -> ProcessBinding:
        binding = self._bindings.get(key)
        if binding is None:
            binding = ProcessBinding(key=key)
            self._bindings[key] = binding
        return binding

    async def _ensure_running(self, binding: ProcessBinding) -> tuple[SubprocessHandle, str]:
        """Retourne le sous-processus vivant du binding, en le (re)lançant si besoin.

        Redémarrage: backoff exponentiel; au-delà de `restart_max_attempts` échecs
        consécutifs, LaunchError immédiate jusqu'à la fin d'un délai de refroidissement.
        """

        if binding.running:
            return binding.handle, binding.incarnation

        async with binding.lock:
            if binding.running:
                return binding.handle, binding.incarnation
            if self._closed or binding.closed:
                raise BridgeShutdownError()

            failures = binding.consecutive_failures
            if failures > self._settings.restart_max_attempts:
                if time.monotonic() - binding.last_failure < MAX_RESTART_BACKOFF:
                    raise LaunchError(
                        f"redémarrage abandonné après {failures} échecs consécutifs",
                        executable=self._settings.mcp_binary_path,
                    )
                binding.consecutive_failures = failures = 0

            if failures:
                delay = min(MAX_RESTART_BACKOFF, self._settings.restart_backoff * (2 ** (failures - 1)))
                logger.warning("🔄 Redémarrage de portainer-mcp (%s) dans %.2fs (échec #%d)", binding.key, delay, failures)
                await asyncio.sleep(delay)

            try:
                handle = await self._manager.spawn(
                    self._settings.mcp_binary_path,
                    self._settings.subprocess_args(),
                )
            except LaunchError:
                binding.consecutive_failures += 1
                binding.last_failure = time.monotonic()
                raise

            binding.generation += 1
            binding.handle = handle
            binding.incarnation = f"{binding.key}#{binding.generation}"
            binding.reader = asyncio.create_task(
                self._read_loop(binding, handle, binding.incarnation),
                name=f"mcp-stdout-{handle.pid}",
            )
            return handle, binding.incarnation

    async def _read_loop(self, binding: ProcessBinding, handle: SubprocessHandle, incarnation: str) -> None:
        """Unique lecteur stdout d'un sous-processus: decode + dispatch dans l'ordre."""

        try:
            while True:
                try:
                    line = await handle.read_line()
                except DecodeError as e:
                    logger.warning("Ligne stdout ignorée (pid=%s): %s", handle.pid, e.cause)
                    continue
                except BridgeIOError as e:
                    logger.error("❌ Lecture stdout interrompue (pid=%s): %s", handle.pid, e.message)
                    break
                if line is None:
                    break

                try:
                    message = decode(line)
                except DecodeError as e:
                    # Une ligne corrompue ne doit pas faire tomber un process sain
                    logger.warning(
                        "Ligne stdout non JSON-RPC ignorée (pid=%s, offset=%s): %s | %r",
                        handle.pid, e.offset, e.cause, line[:200],
                    )
                    continue
                if message is None:
                    continue
                self._dispatch(binding, message)
        finally:
            # stdout fermé: s'assurer que le process se termine (pas de zombie)
            status = await self._manager.terminate(handle)
            self._retire(binding, handle, incarnation, lambda: SubprocessDiedError(exit_status=status))

    def _dispatch(self, binding: ProcessBinding, message: Message) -> None:
        if is_response(message):
            if self._mux.resolve(message.get("id"), message):
                binding.consecutive_failures = 0
            return
        self._broadcast(binding, message)

    def _broadcast(self, binding: ProcessBinding, message: Message) -> None:
        """Pousse un message serveur vers chaque flux SSE lié à ce sous-processus."""

        delivered = 0
        for session in self._mux.sessions_for(binding.key):
            for queue in list(session.streams):
                try:
                    queue.put_nowait(message)
                    delivered += 1
                except asyncio.QueueFull:
                    logger.warning("Flux SSE saturé: message %s abandonné", message.get("method"))
        if not delivered:
            logger.debug("Message serveur sans abonné SSE: %s", message.get("method"))

    def _retire(
        self,
        binding: ProcessBinding,
        handle: SubprocessHandle,
        incarnation: str,
        make_error: Callable[[], Exception],
    ) -> None:
        """Détache un sous-processus mort et échoue ses requêtes en vol."""

        self._manager.forget(handle)
        if binding.handle is handle:
            binding.handle = None
            if not (binding.closed or self._closed):
                binding.consecutive_failures += 1
                binding.last_failure = time.monotonic()

        failed = self._mux.fail_process(incarnation, make_error)
        if failed:
            logger.error("💥 Sous-processus pid=%s perdu: %d requête(s) en vol échouée(s)", handle.pid, failed)

    def _on_write_failure(
        self,
        binding: ProcessBinding,
        handle: SubprocessHandle,
        incarnation: str,
        error: BridgeIOError,
    ) -> None:
        logger.error("❌ Écriture stdin impossible (pid=%s): %s", handle.pid, error.message)
        self._retire(
            binding,
            handle,
            incarnation,
            lambda: SubprocessDiedError(f"Écriture impossible vers le sous-processus: {error.message}"),
        )
        self._track(asyncio.create_task(self._manager.terminate(handle)))

    async def _close_binding(self, binding: ProcessBinding) -> Optional[ExitStatus]:
        binding.closed = True
        handle = binding.handle
        status = None
        if handle is not None:
            status = await self._manager.terminate(handle)
        if binding.reader is not None:
            await _await_tasks([binding.reader], timeout=1.0)
        return status

    def _close_streams(self, session: Session) -> None:
        for queue in list(session.streams):
            # Les événements déjà en file restent livrés; si la file est pleine,
            # le plus ancien cède sa place à la sentinelle.
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(_STREAM_CLOSED)

    def _track(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


async def _await_tasks(tasks: list["asyncio.Task[Any]"], *, timeout: float) -> None:
    # Laisse les tâches finir; ne cancel qu'en dernier recours.
    pending = [t for t in tasks if not t.done()]
    if pending:
        _done, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        for task in still_pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
    for task in tasks:
        if task.done() and not task.cancelled() and task.exception() is not None:
            logger.error("Tâche %s terminée en erreur: %s", task.get_name(), task.exception())
