# tests/conftest.py

import os

# Point the module-level engine at SQLite before crm is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("LOG_LEVEL", "INFO")

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from crm.database import build_engine, build_session_factory, init_models
from crm.models import Tenant
from crm.pipeline_config import default_pipeline_config
from crm.services.contact_orchestrator import ContactWriteOrchestrator
from crm.services.store_access import StorePolicy


# ============================================================================
# DATABASE
# ============================================================================

@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test"""
    engine = build_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def policy():
    """Store policy without backoff so retry tests stay fast"""
    return StorePolicy(timeout_seconds=5.0, max_attempts=3, backoff_seconds=0, max_backoff_seconds=0)


@pytest.fixture
def config():
    return default_pipeline_config()


# ============================================================================
# TENANTS
# ============================================================================

async def _create_tenant(session_factory, name: str) -> Tenant:
    async with session_factory() as session:
        async with session.begin():
            tenant = Tenant(name=name, status="active")
            session.add(tenant)
    return tenant


@pytest_asyncio.fixture
async def tenant(session_factory):
    return await _create_tenant(session_factory, "Acme CRM")


@pytest_asyncio.fixture
async def other_tenant(session_factory):
    return await _create_tenant(session_factory, "Globex CRM")


# ============================================================================
# ORCHESTRATOR
# ============================================================================

@pytest.fixture
def orchestrator(session_factory, config, policy):
    return ContactWriteOrchestrator.build(
        session_factory,
        config=config,
        policy=policy,
        enforce_stage_membership=True
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: unit tests")
    config.addinivalue_line("markers", "integration: integration tests")
