"""
Portainer MCP Wrapper - Application FastAPI Factory.
Expose le serveur portainer-mcp (stdio) en HTTP + SSE authentifié.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from .api.errors import auth_error_response
from .api.router import api_router
from .bridge.process import SubprocessManager
from .bridge.transport import TransportBridge
from .config.loader import load_settings
from .config.settings import Settings
from .core.constants import SERVICE_NAME, SERVICE_VERSION
from .core.exceptions import AuthError
from .services.session_reaper import create_session_reaper

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, *, manager: Optional[SubprocessManager] = None) -> FastAPI:
    """
    Factory pour créer l'application FastAPI.

    Args:
        settings: configuration (chargée depuis l'environnement si absente)
        manager: gestionnaire de sous-processus (injectable pour les tests)

    Returns:
        Instance configurée de FastAPI
    """
    settings = settings or load_settings()
    bridge = TransportBridge(settings, manager=manager)
    reaper = create_session_reaper(bridge)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Gestion du cycle de vie de l'application."""
        # Startup
        await _startup(app)
        yield
        # Shutdown
        await _shutdown(app)

    app = FastAPI(
        title="Portainer MCP Wrapper",
        description="Bridge HTTP/SSE vers le serveur MCP Portainer (stdio)",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.bridge = bridge
    app.state.reaper = reaper

    @app.exception_handler(AuthError)
    async def _auth_error_handler(request: Request, exc: AuthError):
        logger.info("🔒 Accès refusé %s %s: %s", request.method, request.url.path, exc.message)
        return auth_error_response(exc)

    # Inclusion des routes API
    app.include_router(api_router)

    return app


async def _startup(app: FastAPI):
    """Initialisation au démarrage."""
    settings: Settings = app.state.settings

    logger.info("🚀 Démarrage de %s v%s", SERVICE_NAME, SERVICE_VERSION)
    logger.info("✅ Portainer: %s", settings.portainer_url)
    logger.info("✅ Port HTTP: %s (mode sous-processus: %s)", settings.mcp_port, settings.subprocess_mode)
    if settings.mcp_tools_file:
        logger.info("✅ Fichier d'outils: %s", settings.mcp_tools_file)
    if settings.read_only_mode:
        logger.warning("⚠️ READ-ONLY MODE: les outils en écriture sont désactivés")
    if settings.disable_version_check:
        logger.warning("⚠️ Vérification de version Portainer désactivée")

    await app.state.bridge.start()
    await app.state.reaper.start()


async def _shutdown(app: FastAPI):
    """Arrêt de l'application."""
    logger.info("👋 Arrêt du serveur...")

    await app.state.reaper.stop()
    await app.state.bridge.shutdown()

    logger.info("✅ Serveur arrêté proprement")
