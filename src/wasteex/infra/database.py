"""Engine, session factory and schema bootstrap for the marketplace database.

SQLite (aiosqlite) is the default store; any async SQLAlchemy URL can be set
through ``DATABASE_URL``.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from wasteex.app.config import get_settings


class Base(DeclarativeBase):
    """Declarative base shared by every marketplace table."""
    pass


def _engine_options(database_url: str) -> dict:
    if "sqlite" in database_url:
        # Background jobs and requests share one file; writers queue on the lock.
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_size": 5, "max_overflow": 10, "pool_pre_ping": True}


settings = get_settings()
_is_sqlite = "sqlite" in settings.database_url

engine = create_async_engine(settings.database_url, echo=False, **_engine_options(settings.database_url))

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency: one session per request, rolled back if the handler raises."""
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db():
    """Create any missing marketplace tables. Existing tables are left as they are."""
    import wasteex.domain.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if _is_sqlite:
        # WAL: the sweep and ledger retry loops write while requests read.
        async with engine.begin() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA busy_timeout=30000"))
