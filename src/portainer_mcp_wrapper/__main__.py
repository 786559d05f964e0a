"""
Point d'entrée pour `python -m portainer_mcp_wrapper`.
"""
import logging
import os
import sys

import uvicorn

from .config.loader import load_settings
from .core.exceptions import ConfigurationError
from .main import create_app

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def main():
    """Fonction principale."""
    import argparse

    parser = argparse.ArgumentParser(description="Portainer MCP Wrapper")
    parser.add_argument("--host", default=None, help="Host (défaut: MCP_HOST ou 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Port (défaut: MCP_PORT ou 8080)")
    parser.add_argument("--config", default=None, help="Fichier TOML de configuration")

    args = parser.parse_args()

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format=LOG_FORMAT,
    )
    logger = logging.getLogger("portainer_mcp_wrapper")

    try:
        settings = load_settings(config_path=args.config)
    except ConfigurationError as e:
        logger.error("❌ Configuration invalide: %s", e.message)
        sys.exit(1)

    host = args.host or settings.mcp_host
    port = args.port or settings.mcp_port

    logger.info("🚀 Démarrage du Portainer MCP Wrapper sur %s:%s", host, port)

    uvicorn.run(
        create_app(settings),
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
