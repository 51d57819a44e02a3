"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite file or in-memory)
- Table definitions for users, subscriptions, organizations and daily usage
"""
from typing import Optional
from contextlib import contextmanager
import logging
import os

from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    BigInteger,
    String,
    DateTime,
    Date,
    Boolean,
    Float,
    Index,
    ForeignKey,
    UniqueConstraint,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func

from quota_engine.core.config import settings


logger = logging.getLogger(__name__)

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Seconds a SQLite writer waits on a locked database file
SQLITE_BUSY_TIMEOUT = 30

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if _engine is not None:
        _engine.dispose()

    if url.startswith("sqlite"):
        engine_kwargs = {"connect_args": {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite:"):
            # One shared connection, otherwise every checkout sees an empty database
            engine_kwargs["poolclass"] = StaticPool
        _engine = create_engine(url, echo=False, **engine_kwargs)
    else:
        # Create engine with connection pooling
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def dispose_engine() -> None:
    """Dispose the current engine and forget it (tests switch databases)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


# Dialects with INSERT ... ON CONFLICT DO UPDATE ... RETURNING
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert_insert(table: Table):
    """
    Dialect-specific insert() supporting on_conflict_do_update.

    Raises:
        RuntimeError: if the current engine's dialect has no atomic upsert
    """
    dialect = get_engine().dialect.name
    insert_fn = _UPSERT_INSERTS.get(dialect)
    if insert_fn is None:
        raise RuntimeError(f"Atomic upsert is not supported on dialect '{dialect}'")
    return insert_fn(table)


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)

    Commits on success, rolls back and re-raises on any error.
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(select(1))
        return True
    except Exception as e:
        logger.warning("[database] connection check failed", extra={"error": str(e)})
        return False


# Users known to the engine (identity itself lives with the auth provider)
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('role', String(50), nullable=False, server_default='USER'),  # USER | ADMIN | SUPER_ADMIN
    Column('is_guest', Boolean, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_app_users_created_at', 'created_at'),
)

# Personal subscriptions: one row per user, mutated by billing webhooks, never deleted
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False),
    Column('status', String(20), nullable=False),  # TRIAL | ACTIVE | CANCELED | EXPIRED | PAST_DUE
    Column('plan_id', String(200), nullable=True),
    Column('trial_ends_at', DateTime(timezone=True), nullable=True),
    Column('converted_at', DateTime(timezone=True), nullable=True),
    Column('canceled_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('user_id', name='uq_subscriptions_user_id'),
    Index('idx_subscriptions_status', 'status'),
)

organizations = Table(
    'organizations',
    metadata,
    Column('organization_id', String(100), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('status', String(20), nullable=False, server_default='ACTIVE'),  # ACTIVE | SUSPENDED | ARCHIVED
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_organizations_status', 'status'),
)

organization_memberships = Table(
    'organization_memberships',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('organization_id', String(100), ForeignKey('organizations.organization_id'), nullable=False),
    Column('user_id', String(100), nullable=False),
    Column('role', String(20), nullable=False, server_default='MEMBER'),  # OWNER | MEMBER
    Column('status', String(20), nullable=False, server_default='ACTIVE'),  # ACTIVE | REMOVED | BLOCKED
    Column('joined_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('organization_id', 'user_id', name='uq_org_memberships_org_user'),
    # Entitlement resolution looks up memberships by user and status
    Index('idx_org_memberships_user_status', 'user_id', 'status'),
)

# Contracts store fully-resolved limits; defaults are applied at write time
organization_contracts = Table(
    'organization_contracts',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('organization_id', String(100), ForeignKey('organizations.organization_id'), nullable=False),
    Column('base_plan', String(20), nullable=False),
    Column('seat_limit', Integer, nullable=False),
    Column('plan_label', String(200), nullable=False),
    Column('model_tier', String(20), nullable=False),
    Column('max_requests_per_day', Integer, nullable=False),
    Column('max_input_tokens_per_day', BigInteger, nullable=False),
    Column('max_output_tokens_per_day', BigInteger, nullable=False),
    Column('max_cost_per_day_usd', Float, nullable=False),
    Column('max_context_messages', Integer, nullable=False),
    Column('version', Integer, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('organization_id', name='uq_org_contracts_org_id'),
)

# Per-user, per-UTC-day counters; rows are created lazily by the first increment
daily_usage = Table(
    'daily_usage',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('usage_date', Date, nullable=False),
    Column('request_count', Integer, nullable=False, server_default='0'),
    Column('input_tokens', BigInteger, nullable=False, server_default='0'),
    Column('output_tokens', BigInteger, nullable=False, server_default='0'),
    Column('total_cost_usd', Float, nullable=False, server_default='0'),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # Conflict target of the atomic upsert
    UniqueConstraint('user_id', 'usage_date', name='uq_daily_usage_user_date'),
)
