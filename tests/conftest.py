"""
Configuration des tests pytest.
"""
import os
import sys

import pytest

# Ajoute src (package) et tests (fixtures) au path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))
sys.path.insert(0, os.path.dirname(__file__))

from fixtures.helpers import ACCESS_TOKEN, make_settings  # noqa: E402


def pytest_configure(config):
    """Enregistre les marqueurs du projet."""
    config.addinivalue_line("markers", "asyncio: marque un test comme asynchrone")
    config.addinivalue_line("markers", "unit: test unitaire (aucun binaire externe)")
    config.addinivalue_line("markers", "integration: test lançant un vrai sous-processus Python")


@pytest.fixture
def settings():
    """Fixture pour la configuration de test."""
    return make_settings()


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {ACCESS_TOKEN}"}
