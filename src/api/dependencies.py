"""FastAPI dependency injection factories for the geography engine.

Read-only engine components (store, search, resolver) open their own
short-lived sessions through get_session_factory and share one
process-wide ResultCache. CodeGenerator writes through the request's
Unit-of-Work session from get_async_session.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config.settings import Settings, get_settings
from src.db.session import get_async_session, get_session_factory
from src.geography.cache import ResultCache
from src.geography.households import CodeGenerator
from src.geography.resolver import HierarchyResolver, build_resolver
from src.geography.search import SearchIndex
from src.geography.store import HierarchyStore
from src.repositories.households import HouseholdRepository

# ---------------------------------------------------------------------------
# Shared cache
# ---------------------------------------------------------------------------


@lru_cache
def get_result_cache() -> ResultCache:
    """Process-wide cache shared by every request."""
    settings = get_settings()
    return ResultCache(
        ttl_seconds=settings.PSGC_CACHE_TTL_SECONDS,
        max_entries=settings.PSGC_CACHE_MAX_ENTRIES,
    )


# ---------------------------------------------------------------------------
# Read-only engine components
# ---------------------------------------------------------------------------


async def get_hierarchy_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    cache: ResultCache = Depends(get_result_cache),
    settings: Settings = Depends(get_settings),
) -> HierarchyStore:
    return HierarchyStore(
        session_factory,
        cache=cache,
        independent_region_code=settings.INDEPENDENT_REGION_CODE,
        timeout_seconds=settings.STORE_QUERY_TIMEOUT_SECONDS,
    )


async def get_search_index(
    store: HierarchyStore = Depends(get_hierarchy_store),
    cache: ResultCache = Depends(get_result_cache),
    settings: Settings = Depends(get_settings),
) -> SearchIndex:
    return SearchIndex(
        store,
        cache=cache,
        min_query_length=settings.SEARCH_MIN_QUERY_LENGTH,
        max_results_cap=settings.SEARCH_MAX_RESULTS_CAP,
    )


async def get_hierarchy_resolver(
    store: HierarchyStore = Depends(get_hierarchy_store),
    cache: ResultCache = Depends(get_result_cache),
    settings: Settings = Depends(get_settings),
) -> HierarchyResolver:
    return build_resolver(
        store,
        cache=cache,
        retry_delay_seconds=settings.RESOLVER_RETRY_DELAY_SECONDS,
        budget_seconds=settings.RESOLVER_BUDGET_SECONDS,
    )


# ---------------------------------------------------------------------------
# Households
# ---------------------------------------------------------------------------


async def get_code_generator(
    session: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> CodeGenerator:
    return CodeGenerator(session, max_attempts=settings.CODE_GENERATION_MAX_ATTEMPTS)


async def get_household_repo(
    session: AsyncSession = Depends(get_async_session),
) -> HouseholdRepository:
    return HouseholdRepository(session)
