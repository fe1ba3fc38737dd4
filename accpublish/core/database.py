import ssl
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from accpublish.config import Settings, get_settings
from accpublish.core.logging import get_logger

logger = get_logger(__name__)

settings = get_settings()

# libpq parameters asyncpg rejects
UNSUPPORTED_ASYNCPG_PARAMS = ("sslmode", "channel_binding", "options")
LOCAL_HOSTS = ("localhost", "127.0.0.1", "db")


def _fix_asyncpg_url(url: str) -> tuple[str, dict]:
    """
    Make a libpq-style Postgres URL usable by asyncpg.

    Strips the query parameters asyncpg rejects and moves SSL to
    ``connect_args``: remote hosts get a default SSL context, local hosts none.
    Non-Postgres URLs (SQLite in development) are returned unchanged.
    """
    parsed = urlparse(url)
    if not parsed.scheme.startswith("postgresql"):
        return url, {}

    params = parse_qs(parsed.query)
    for param in UNSUPPORTED_ASYNCPG_PARAMS:
        params.pop(param, None)
    clean_url = urlunparse(parsed._replace(query=urlencode(params, doseq=True)))

    if (parsed.hostname or "") in LOCAL_HOSTS:
        return clean_url, {}
    return clean_url, {"ssl": ssl.create_default_context()}


def engine_options(url: str, config: Settings) -> tuple[str, dict[str, Any]]:
    """Cleaned URL and ``create_async_engine`` keyword arguments.

    Pool sizing only applies to Postgres; SQLite keeps SQLAlchemy's defaults.
    """
    clean_url, connect_args = _fix_asyncpg_url(url)
    options: dict[str, Any] = {
        "echo": config.debug,
        "pool_pre_ping": True,
        "connect_args": connect_args,
    }
    if clean_url.startswith("postgresql"):
        options.update(
            pool_size=config.database_pool_size,
            max_overflow=config.database_max_overflow,
            pool_recycle=config.database_pool_recycle,
        )
    return clean_url, options


clean_url, _options = engine_options(settings.database_url, settings)

engine = create_async_engine(clean_url, **_options)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Session committed on success, rolled back (and logged) on error."""
    async with (factory or AsyncSessionLocal)() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.bind(error=str(e)).error("database_transaction_rollback")
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with session_scope() as session:
        yield session
