"""
Async engine, session factory and declarative base for the client and
project tables.

Sessions are handed out per request by ``get_db``. Coordinators commit
explicitly, and ``Project``/``Client`` rows carry a ``row_version`` column,
so the factory never autoflushes or expires on commit: an aggregate loaded
in one unit of work stays readable after the commit that persisted it.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

import config


def _engine_options(url: str) -> dict:
    options = {"echo": config.settings.DB_ECHO, "pool_pre_ping": True}
    # SQLite (local runs, tests) has no connection pool to size
    if not url.startswith("sqlite"):
        options["pool_size"] = config.settings.DB_POOL_SIZE
        options["max_overflow"] = config.settings.DB_MAX_OVERFLOW
    return options


engine = create_async_engine(
    config.settings.DATABASE_URL, **_engine_options(config.settings.DATABASE_URL)
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Base of users, clients (documents, notes) and projects (team, tasks, milestones, notes)
Base = declarative_base()


async def get_db() -> AsyncSession:
    """Yield one session per request; closing it discards uncommitted work."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    """Create any missing tables. Alembic owns schema changes; this only bootstraps a fresh database."""
    # Register every mapped class on Base.metadata before create_all
    import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
