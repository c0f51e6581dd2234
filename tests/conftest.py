"""Shared pytest fixtures for the PSGC household engine test suite.

Provides:
- db_engine: in-memory SQLite async engine with all tables and the view
- db_session: SAVEPOINT-isolated async session (app commits don't leak)
- session_factory: sessionmaker over db_engine, for components that open
  one session per backing-store call
- psgc_seed: the sample PSGC tree committed through session_factory
- client: AsyncClient wired to the test engine and a fresh ResultCache
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from scripts.seed import seed_demo
from src.db.session import Base, get_async_session, get_session_factory
import src.db.tables  # noqa: F401 — register ORM models on Base.metadata


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine with all tables."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Provide a SAVEPOINT-isolated session.

    The outer transaction is never committed — it rolls back at teardown.
    Application code calling session.commit() triggers a SAVEPOINT release,
    which is then restarted so subsequent operations stay in the same
    outer transaction. This ensures full test isolation.
    """
    async with db_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        # Start a nested SAVEPOINT
        nested = await conn.begin_nested()

        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(sync_session, transaction):  # noqa: ARG001
            nonlocal nested
            if transaction.nested and not transaction._parent.nested:
                nested = conn.sync_connection.begin_nested()

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the per-test engine.

    Each test gets a fresh in-memory database, so data committed through
    this factory never leaks between tests.
    """
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def psgc_seed(session_factory) -> dict:
    """Commit the sample PSGC tree (regions 01, 04, 13) and address parts."""
    async with session_factory() as session:
        result = await seed_demo(session)
        await session.commit()
    return result


@pytest.fixture
async def client(session_factory, psgc_seed):
    """AsyncClient over the app with DB dependencies pointed at the test engine."""
    from src.api.dependencies import get_result_cache
    from src.api.main import app
    from src.geography.cache import ResultCache

    cache = ResultCache()

    async def _override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_async_session] = _override_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_result_cache] = lambda: cache

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
