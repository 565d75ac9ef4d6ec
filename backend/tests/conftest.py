"""
Rental Energia - Fixtures de teste
O cliente Motor é trocado pelo mongomock-motor antes de qualquer import de
services/routes (eles guardam `db` no import).
Run: cd backend && pytest tests -v
"""

import pytest
from mongomock_motor import AsyncMongoMockClient

import config

config.client = AsyncMongoMockClient()
config.db = config.client[config.DB_NAME]

from tests.helpers import clear_db, run  # noqa: E402


@pytest.fixture(autouse=True)
def clean_db():
    clear_db()
    yield


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "STORAGE_DIR", tmp_path / "storage")
    monkeypatch.setattr(config, "CONTRACT_TEMPLATES_DIR", tmp_path / "templates")
    monkeypatch.setattr(config, "CLICKSIGN_WEBHOOK_URL", "")
    return tmp_path


@pytest.fixture
def pipelines():
    from services.crm_pipeline import ensure_default_pipelines
    run(ensure_default_pipelines())


@pytest.fixture
def api(pipelines):
    from fastapi.testclient import TestClient
    from server import app
    return TestClient(app)
