"""Tests for database URL handling and session scoping."""

import ssl
import uuid

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from accpublish.core.database import _fix_asyncpg_url, engine_options, session_scope
from accpublish.models import Base, PublishJob
from tests.conftest import LINEAGE_URN
from tests.conftest import TestSettings as SqliteSettings


class TestFixAsyncpgUrl:
    """Tests for libpq URL cleanup."""

    def test_strips_unsupported_params(self):
        url, connect_args = _fix_asyncpg_url(
            "postgresql+asyncpg://u:p@localhost:5432/db?sslmode=require&channel_binding=require"
        )
        assert url == "postgresql+asyncpg://u:p@localhost:5432/db"
        assert connect_args == {}

    def test_remote_host_gets_ssl(self):
        _, connect_args = _fix_asyncpg_url("postgresql+asyncpg://u:p@db.example.com/db")
        assert isinstance(connect_args["ssl"], ssl.SSLContext)

    def test_sqlite_is_untouched(self):
        assert _fix_asyncpg_url("sqlite+aiosqlite:///./dev.db") == ("sqlite+aiosqlite:///./dev.db", {})


class TestEngineOptions:
    """Tests for engine keyword arguments."""

    def test_postgres_gets_pool_settings(self):
        settings = SqliteSettings(database_pool_size=3, database_max_overflow=1)
        _, options = engine_options("postgresql+asyncpg://u:p@localhost/db", settings)

        assert options["pool_size"] == 3
        assert options["max_overflow"] == 1
        assert options["pool_recycle"] == 280
        assert options["pool_pre_ping"] is True

    def test_sqlite_keeps_default_pool(self):
        _, options = engine_options("sqlite+aiosqlite:///:memory:", SqliteSettings())
        assert "pool_size" not in options
        assert options["echo"] is True


@pytest.mark.asyncio
class TestSessionScope:
    """Tests for commit/rollback behavior."""

    @pytest_asyncio.fixture
    async def factory(self):
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield async_sessionmaker(engine, expire_on_commit=False)
        await engine.dispose()

    def _job(self) -> PublishJob:
        return PublishJob(
            user_id=uuid.uuid4(),
            hub_id="b.hub",
            project_id="b.project",
            models=[LINEAGE_URN],
            cron_expression="0 2 * * *",
            timezone="UTC",
        )

    async def test_commits_on_success(self, factory):
        async with session_scope(factory) as db:
            db.add(self._job())

        async with factory() as db:
            assert len((await db.execute(select(PublishJob))).scalars().all()) == 1

    async def test_rolls_back_and_reraises(self, factory):
        with pytest.raises(RuntimeError, match="boom"):
            async with session_scope(factory) as db:
                db.add(self._job())
                await db.flush()
                raise RuntimeError("boom")

        async with factory() as db:
            assert (await db.execute(select(PublishJob))).scalars().all() == []
