# quota_engine/conftest.py
import pytest

from quota_engine.features.plans.catalog import DEFAULT_PLAN_CATALOG
from quota_engine.features.rate_limit.service import RateLimitEngine
from quota_engine.tests.fakes import FakeClock, InMemoryOrganizationRepository, InMemoryUsageStore


@pytest.fixture(scope="function")
def sqlite_db(tmp_path):
    """
    Fresh SQLite database file per test, bound as the global engine.

    A file (not :memory:) so that worker threads get their own connections.
    """
    from quota_engine.core.database import init_engine, create_all_tables, dispose_engine

    url = f"sqlite:///{tmp_path / 'quota_engine.db'}"
    init_engine(url)
    create_all_tables()
    yield url
    dispose_engine()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog():
    return DEFAULT_PLAN_CATALOG


@pytest.fixture
def org_repo():
    return InMemoryOrganizationRepository()


@pytest.fixture
def usage_store():
    return InMemoryUsageStore()


@pytest.fixture
def rate_limit_engine(org_repo, usage_store, clock, catalog):
    return RateLimitEngine(org_repo, usage_store, catalog=catalog, clock=clock, upgrade_url="/pricing", locale="it")
