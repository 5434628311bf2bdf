"""
Shared test fixtures and configuration for the WFM authorization core tests.
"""
import os
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DEBUG"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only-min-32-chars"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.pop("REDIS_URL", None)
os.environ.pop("REDIS_HOST", None)

# Importing the app configures logging once, before any caplog handler is installed
import app.main  # noqa: E402,F401

TENANT_A = "COMP-A"
TENANT_B = "COMP-B"


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine with every table created; each session gets its own connection."""
    from app.db.base import Base

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def companies(session_factory):
    """Two active tenants."""
    from app.models.company import Company

    async with session_factory() as session:
        session.add_all([
            Company(company_id=TENANT_A, company_name="Alpha Billing"),
            Company(company_id=TENANT_B, company_name="Beta Claims"),
        ])
        await session.commit()
    return [TENANT_A, TENANT_B]


@pytest.fixture
def memory_cache():
    from app.core.cache import InMemoryCache
    return InMemoryCache()


@pytest.fixture
def registry(session_factory):
    from app.services.role_registry import RoleRegistry
    return RoleRegistry(session_factory)


@pytest.fixture
def permission_cache(memory_cache, registry):
    from app.services.permission_cache import PermissionCache
    return PermissionCache(memory_cache, registry, ttl=30, probe_interval=0)


@pytest.fixture
def quota(memory_cache):
    from app.services.quota_counter import QuotaCounter
    return QuotaCounter(memory_cache)


@pytest.fixture
def evaluator(permission_cache, quota):
    from app.services.permission_evaluator import PermissionEvaluator
    return PermissionEvaluator(permission_cache, quota)


@pytest.fixture
def audit_repository(session_factory):
    from app.core.audit import AuditLogRepository
    return AuditLogRepository(session_factory)


@pytest_asyncio.fixture
async def authz_services(session_factory, memory_cache, companies):
    """Fully wired services over the in-memory store, recorder running with one worker."""
    from app.services.authz import AuthzServices

    services = AuthzServices.build(
        session_factory,
        cache_backend=memory_cache,
        worker_count=1,
        retry_backoff=0,
    )
    await services.start()
    yield services
    await services.recorder.stop(drain=True)


@pytest.fixture
def mock_request():
    """Create a mock FastAPI request object."""
    request = MagicMock()
    request.cookies = {}
    request.client = MagicMock()
    request.client.host = "127.0.0.1"
    request.headers = {}
    request.url = MagicMock()
    request.url.path = "/api/v1/test"
    request.method = "GET"
    return request


@pytest.fixture
def mock_alert_sink():
    sink = MagicMock()
    sink.alert = AsyncMock()
    return sink


# Test data generators
def make_role_spec(
    name: str = "Claims Specialist",
    level: int = 3,
    permissions: Optional[Dict[str, List[str]]] = None,
    capabilities: Optional[Dict[str, bool]] = None,
    **overrides: Any,
):
    """RoleSpec with sensible defaults for tests."""
    from app.schemas.role import RoleSpec

    return RoleSpec(
        role_name=name,
        role_level=level,
        permissions=permissions if permissions is not None else {"claim": ["View", "Update"]},
        capabilities=capabilities or {},
        **overrides,
    )


def employee_actor(role_id: Optional[str], tenant_id: str = TENANT_A, employee_id: str = "EMP-1"):
    from app.core.rbac import EmployeeActor
    return EmployeeActor(employee_id=employee_id, tenant_id=tenant_id, role_id=role_id)
