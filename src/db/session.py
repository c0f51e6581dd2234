"""Database engine and sessions for the PSGC household engine.

Two ways in:
- get_async_session: request-scoped Unit of Work for household writes.
  Repositories add()/flush(); the commit happens once when the request
  succeeds, and any exception rolls the whole request back.
- get_session_factory: the HierarchyStore opens one short session per
  reference-data read, so a slow lookup never holds a request's session.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.config.settings import get_settings


class Base(DeclarativeBase):
    """Declarative base for the psgc_*, geo_* and households rows."""


_settings = get_settings()

engine = create_async_engine(
    _settings.DATABASE_URL,
    echo=(_settings.ENVIRONMENT == "dev"),
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield the request's session; commit on success, roll back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory
