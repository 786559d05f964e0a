"""Service — Expiration des sessions MCP inactives.

Objectif:
    - Fermer les sessions sans activité depuis `session_timeout`
      (équivalent du SessionTimeout de 5 minutes du handler HTTP d'origine)

Contraintes:
    - Une session avec requête en vol ou flux SSE ouvert n'expire jamais
    - Une erreur pendant un cycle ne doit jamais arrêter la boucle
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ..bridge.transport import TransportBridge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionReaperConfig:
    """Configuration de l'expiration des sessions."""

    enabled: bool = True
    interval_seconds: float = 30.0
    backoff_max_seconds: float = 300.0


class SessionReaperService:
    """Boucle périodique qui ferme les sessions inactives du bridge."""

    def __init__(self, bridge: TransportBridge, config: SessionReaperConfig):
        self._bridge = bridge
        self._config = config

        self._running = False
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def config(self) -> SessionReaperConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Démarre la boucle dans une tâche asyncio."""

        if not self._config.enabled:
            return

        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._reap_loop())

    async def stop(self) -> None:
        """Arrête la boucle proprement (annule la tâche)."""

        self._running = False
        if not self._task:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

    async def reap_once(self) -> int:
        """Exécute un cycle d'expiration.

        Returns:
            Nombre de sessions fermées.
        """

        closed = await self._bridge.reap_idle_sessions()
        if closed:
            logger.info("🧹 %d session(s) inactive(s) fermée(s)", closed)
        return closed

    async def _reap_loop(self) -> None:
        """Boucle principale: expiration périodique + backoff exponentiel sur erreurs."""

        # Minimum hard pour éviter un busy-loop.
        delay = max(self._config.interval_seconds, 0.05)

        while self._running:
            try:
                await self.reap_once()
                delay = max(self._config.interval_seconds, 0.05)
            except asyncio.CancelledError:
                break
            except Exception as e:
                # Backoff exponentiel borné.
                logger.warning("⚠️ Erreur expiration des sessions: %s", e)
                backoff_cap = max(self._config.backoff_max_seconds, delay)
                delay = min(delay * 2.0, backoff_cap)

            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                break


def create_session_reaper(bridge: TransportBridge) -> SessionReaperService:
    """Factory: intervalle dérivé du timeout de session (au moins 4 passes par timeout)."""

    timeout = bridge.settings.session_timeout
    return SessionReaperService(
        bridge=bridge,
        config=SessionReaperConfig(
            enabled=timeout > 0,
            interval_seconds=min(30.0, max(timeout / 4.0, 0.05)),
        ),
    )
