"""
Pytest configuration and fixtures for accpublish tests.

Provides:
- Async test database with SQLite
- Store, runner and scheduler wired to the test database
- Test client for API testing
- Factory fixtures for creating test data
- ``FakeAps``, an in-memory Data Management API served through httpx.MockTransport
"""

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from accpublish.config import PublishConfig, SchedulerConfig, Settings, get_settings
from accpublish.core.database import get_db
from accpublish.core.datetime_utils import utc_now
from accpublish.core.scheduler import PublishScheduler
from accpublish.dependencies import get_publish_scheduler
from accpublish.main import app
from accpublish.models import Base, PublishJob, PublishRun, RunStatus
from accpublish.models.user import Session, User
from accpublish.services.publish_runner import PublishRunner
from accpublish.services.publish_store import PublishStore

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

APS_BASE = "https://aps.test"
LINEAGE_URN = "urn:adsk.wipprod:dm.lineage:AbC123"
LINEAGE_URN_2 = "urn:adsk.wipprod:dm.lineage:DeF456"
VERSION_URN = "urn:adsk.wipprod:fs.file:vf.AbC123?version=4"


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    base_url: str = "http://localhost:8000"
    scheduler_enabled: bool = False
    aps_client_id: str = "test-client"
    aps_client_secret: str = "test-secret"
    aps_base_url: str = APS_BASE
    publish_retry_base_ms: int = 100


def make_publish_config(**overrides) -> PublishConfig:
    """Publish config on the fake APS host; settings fields can be overridden."""
    yaml_keys = {"regions", "removable_id_prefixes", "probe_timeout_seconds", "dry_run_delay_ms"}
    data = {k: v for k, v in overrides.items() if k in yaml_keys}
    settings = TestSettings(**{k: v for k, v in overrides.items() if k not in yaml_keys})
    return PublishConfig(data, settings)


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_sessionmaker(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(db_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with db_sessionmaker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def store(db_sessionmaker) -> PublishStore:
    return PublishStore(db_sessionmaker)


@pytest.fixture
def credentials() -> AsyncMock:
    """Credential provider that always hands out a token."""
    provider = AsyncMock()
    provider.ensure_valid_token.return_value = "test-access-token"
    return provider


@pytest.fixture
def publish_config() -> PublishConfig:
    """Dry-run config with no simulated delay."""
    return make_publish_config(dry_run_delay_ms=0)


@pytest.fixture
def runner(store, credentials, publish_config) -> PublishRunner:
    return PublishRunner(store, credentials, publish_config)


@pytest.fixture
def scheduler(store, runner) -> PublishScheduler:
    """Scheduler whose APScheduler is never started (cron jobs stay pending)."""
    return PublishScheduler(store, runner, SchedulerConfig({"history_limit": 5}))


@pytest_asyncio.fixture
async def client(db_sessionmaker, scheduler) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database and scheduler overrides."""
    from accpublish.core.rate_limit import limiter

    async def override_get_db():
        async with db_sessionmaker() as session:
            yield session
            await session.commit()

    def override_get_settings():
        return TestSettings()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = override_get_settings
    app.dependency_overrides[get_publish_scheduler] = lambda: scheduler

    # Reset rate limiter storage before each test
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def user_factory(db_sessionmaker):
    """Factory for creating test users (committed, with a valid token)."""

    async def _create_user(email: str | None = None, **fields) -> User:
        if email is None:
            email = f"test-{uuid.uuid4().hex[:8]}@example.com"

        fields.setdefault("access_token", "stored-access-token")
        fields.setdefault("refresh_token", "stored-refresh-token")
        fields.setdefault("token_expires_at", utc_now() + timedelta(hours=1))

        user = User(email=email, **fields)
        async with db_sessionmaker() as db:
            db.add(user)
            await db.commit()
        return user

    return _create_user


@pytest_asyncio.fixture
async def login_session_factory(db_sessionmaker, user_factory):
    """Factory for creating login sessions (the ``session_id`` cookie)."""

    async def _create_session(user: User | None = None) -> Session:
        if user is None:
            user = await user_factory()

        session = Session(user_id=user.id, expires_at=utc_now() + timedelta(days=30))
        async with db_sessionmaker() as db:
            db.add(session)
            await db.commit()
        return session

    return _create_session


@pytest_asyncio.fixture
async def job_factory(store: PublishStore, user_factory):
    """Factory for creating publish jobs."""

    async def _create_job(user: User | None = None, **fields) -> PublishJob:
        if user is None:
            user = await user_factory()

        fields.setdefault("hub_id", "b.hub-1")
        fields.setdefault("project_id", "b.project-1")
        fields.setdefault("models", [LINEAGE_URN, LINEAGE_URN_2])
        fields.setdefault("cron_expression", "0 2 * * *")
        fields.setdefault("timezone", "UTC")
        return await store.create_job(user_id=user.id, **fields)

    return _create_job


@pytest_asyncio.fixture
async def run_factory(store: PublishStore):
    """Factory for creating publish runs."""

    async def _create_run(job: PublishJob, **fields) -> PublishRun:
        fields.setdefault("status", RunStatus.RUNNING)
        fields.setdefault("started_at", utc_now())
        return await store.create_run(
            job_id=job.id,
            user_id=job.user_id,
            hub_id=job.hub_id,
            project_id=job.project_id,
            items=list(job.models),
            **fields,
        )

    return _create_run


@pytest_asyncio.fixture
async def authed_client(client: AsyncClient, login_session_factory, user_factory):
    """Client with a session cookie; returns (client, user)."""
    user = await user_factory()
    session = await login_session_factory(user)
    client.cookies.set("session_id", str(session.id))
    return client, user


# ============================================================================
# Fake Autodesk Data Management API
# ============================================================================


class FakeAps:
    """
    In-memory stand-in for the regional Data Management API.

    ``projects`` maps region -> set of project ids found there, ``items``
    region -> {item urn: tip version urn}. ``publish_statuses`` is a per-region
    queue of status codes returned by successive publish commands (default 201).
    """

    def __init__(self) -> None:
        self.projects: dict[str, set[str]] = {"us": set(), "emea": set()}
        self.items: dict[str, dict[str, str]] = {"us": {}, "emea": {}}
        self.publish_statuses: dict[str, list[int]] = {"us": [], "emea": []}
        self.tip_missing: set[str] = set()
        self.requests: list[httpx.Request] = []

    def publish_calls(self, region: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == "POST"
            and r.url.path.endswith("/commands")
            and (region is None or f"/regions/{region}/" in r.url.path)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.split("/")
        # /data/v2/regions/{region}/projects/{pid}/...
        region, project_id, rest = parts[4], parts[6], parts[7:]

        if project_id not in self.projects.get(region, set()):
            return httpx.Response(404, json={"errors": [{"detail": "project not found"}]})

        if not rest:
            return httpx.Response(200, json={"data": {"id": project_id, "type": "projects"}})

        if rest[0] == "commands":
            queue = self.publish_statuses.get(region) or []
            status = queue.pop(0) if queue else 201
            return httpx.Response(status, json={"data": {"type": "commands", "id": "cmd-1"}})

        if rest[0] == "items":
            urn = rest[1]
            tip = self.items.get(region, {}).get(urn)
            if tip is None:
                return httpx.Response(404)
            if request.method == "HEAD":
                return httpx.Response(200)
            if rest[-1] == "versions":
                return httpx.Response(200, json={"data": [{"id": tip, "type": "versions"}]})
            relationships = {} if urn in self.tip_missing else {"tip": {"data": {"id": tip}}}
            return httpx.Response(
                200, json={"data": {"id": urn, "relationships": relationships}}
            )

        return httpx.Response(404)


@pytest.fixture
def fake_aps() -> FakeAps:
    return FakeAps()


@pytest.fixture
def aps_client_factory(fake_aps: FakeAps) -> Callable[[], httpx.AsyncClient]:
    return lambda: httpx.AsyncClient(transport=httpx.MockTransport(fake_aps.handler))
