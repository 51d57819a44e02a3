"""
Database foundation tests.

This tests:
1. Engine initialization and URL resolution
2. Table creation (idempotent) and reset
3. Connection check
"""

import pytest
from sqlalchemy import inspect, insert, select

from quota_engine.core import database
from quota_engine.core.database import (
    check_connection,
    create_all_tables,
    get_database_url,
    get_db_session,
    get_engine,
    init_engine,
    reset_database,
    users,
)


EXPECTED_TABLES = {
    "app_users",
    "subscriptions",
    "organizations",
    "organization_memberships",
    "organization_contracts",
    "daily_usage",
}


def test_tables_created(sqlite_db):
    """Should create every table the engine needs."""
    create_all_tables()  # idempotent
    assert EXPECTED_TABLES <= set(inspect(get_engine()).get_table_names())
    assert check_connection()


def test_reset_database_clears_rows(sqlite_db):
    """Should clear stored rows on reset."""
    with get_db_session() as session:
        session.execute(insert(users).values(user_id="u1"))

    reset_database()

    with get_db_session() as session:
        assert session.execute(select(users)).first() is None


def test_session_rolls_back_on_error(sqlite_db):
    """Should roll back and re-raise when the session block fails."""
    with pytest.raises(RuntimeError):
        with get_db_session() as session:
            session.execute(insert(users).values(user_id="u1"))
            raise RuntimeError("boom")

    with get_db_session() as session:
        assert session.execute(select(users)).first() is None


def test_test_database_url_takes_precedence(monkeypatch):
    """Should prefer TEST_DATABASE_URL over DATABASE_URL."""
    monkeypatch.setenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    assert get_database_url() == "sqlite:///:memory:"


def test_missing_database_url_raises(monkeypatch):
    """Should refuse to build an engine without a URL."""
    monkeypatch.delenv("TEST_DATABASE_URL", raising=False)
    monkeypatch.setattr(database.settings, "DATABASE_URL", None)
    with pytest.raises(ValueError):
        init_engine()


def test_in_memory_sqlite_shares_one_connection():
    """Should keep in-memory SQLite tables visible across sessions."""
    try:
        init_engine("sqlite:///:memory:")
        create_all_tables()
        with get_db_session() as session:
            session.execute(insert(users).values(user_id="u1"))
        with get_db_session() as session:
            assert session.execute(select(users.c.user_id)).scalar() == "u1"
    finally:
        database.dispose_engine()
