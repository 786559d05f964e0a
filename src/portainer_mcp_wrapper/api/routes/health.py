"""
Routes API pour le health check.

Sans authentification et indépendant de l'état du sous-processus.
"""
from fastapi import APIRouter

from ...core.constants import SERVICE_NAME, SERVICE_VERSION

router = APIRouter()


@router.get("/health")
async def health_check():
    """Liveness: corps fixe."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
    }
