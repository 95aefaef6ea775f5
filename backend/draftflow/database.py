"""Database engine, session factory and declarative base for the report store.

One session dependency for FastAPI:
  - get_db()  → commits on success, rolls back on any error
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from draftflow.config import settings


def _engine_options(url: str) -> dict:
    # SQLite engines (tests, local demos) do not take pool sizing arguments
    if url.startswith("sqlite"):
        return {"echo": settings.debug}
    return {"echo": settings.debug, "pool_size": 20, "max_overflow": 10}


engine = create_async_engine(
    settings.database_url,
    **_engine_options(settings.database_url),
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    """Models for the report store."""
    pass


async def get_db() -> AsyncSession:
    """Yield a session; commit when the request succeeds."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables() -> None:
    """Create any missing tables from the ORM metadata."""
    import draftflow.models  # noqa: F401  (registers models on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
