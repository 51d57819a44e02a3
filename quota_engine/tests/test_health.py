"""
Tests for liveness and readiness endpoints.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from quota_engine.core.database import dispose_engine, get_engine, init_engine
from quota_engine.main import app


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


def test_healthz(client):
    """Should answer without touching the database."""
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_with_all_tables(client, sqlite_db):
    """Should report ready when every required table exists."""
    response = client.get("/readyz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_reports_missing_tables(client, sqlite_db):
    """Should return 503 naming the tables that are missing."""
    with get_engine().begin() as conn:
        conn.execute(text("DROP TABLE daily_usage"))

    response = client.get("/readyz")

    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "error"
    assert data["detail"] == "missing tables: daily_usage"


def test_readyz_database_unreachable(client, tmp_path):
    """Should return 503 when the database cannot be opened."""
    init_engine(f"sqlite:///{tmp_path / 'missing-dir' / 'quota_engine.db'}")
    try:
        response = client.get("/readyz")
    finally:
        dispose_engine()

    assert response.status_code == 503
    assert response.json() == {"status": "error", "detail": "database unreachable"}
