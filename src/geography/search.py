"""SearchIndex — free-text lookup over PSGC names.

Queries shorter than the minimum length return nothing without touching the
store. Matching is a case-insensitive substring match on name; the result
cap is applied in the SQL LIMIT, not after fetching. Results across levels
are de-duplicated by code and ordered alphabetically (ties by code).

A backing-store failure raises SearchUnavailableError so callers can tell
"no matches" apart from "search unavailable".

Debounce is the caller's job: SearchDebouncer coalesces rapid input with a
quiet period before delegating to SearchIndex.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Generic, TypeVar

from src.geography.cache import CacheKey, ResultCache
from src.geography.errors import SearchUnavailableError, StoreError
from src.geography.store import HierarchyStore
from src.models.common import GeoLevel
from src.models.geography import Option, SearchPage, SearchResult

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
MAX_RESULTS_CAP = 100
DEFAULT_LEVELS: tuple[GeoLevel, ...] = (GeoLevel.CITY, GeoLevel.BARANGAY)

# Ancestor name columns per level, nearest first.
_ANCESTOR_NAMES: dict[GeoLevel, tuple[str, ...]] = {
    GeoLevel.REGION: (),
    GeoLevel.PROVINCE: ("region_name",),
    GeoLevel.CITY: ("province_name", "region_name"),
    GeoLevel.BARANGAY: ("city_municipality_name", "province_name", "region_name"),
}


def _to_result(level: GeoLevel, row: dict) -> SearchResult:
    parts = [row["name"], *(row.get(col) for col in _ANCESTOR_NAMES[level])]
    return SearchResult(
        code=row["code"],
        name=row["name"],
        level=level,
        full_address=", ".join(p for p in parts if p),
        region_code=row.get("region_code"),
        province_code=row.get("province_code"),
        city_municipality_code=row.get("city_municipality_code"),
    )


class SearchIndex:
    """Minimum-length-gated, capped, paged name search."""

    def __init__(
        self,
        store: HierarchyStore,
        *,
        cache: ResultCache | None = None,
        min_query_length: int = MIN_QUERY_LENGTH,
        max_results_cap: int = MAX_RESULTS_CAP,
        default_levels: Iterable[GeoLevel] = DEFAULT_LEVELS,
    ) -> None:
        self._store = store
        self._cache = cache
        self.min_query_length = min_query_length
        self.max_results_cap = max_results_cap
        self.default_levels = tuple(default_levels)

    async def search(self, query: str, max_results: int = 20) -> list[Option]:
        """Options whose names contain query, capped at max_results."""
        page = await self.search_page(query, limit=max_results)
        return [r.as_option() for r in page.data]

    async def search_page(
        self,
        query: str,
        *,
        limit: int = 20,
        offset: int = 0,
        levels: Iterable[GeoLevel] | None = None,
    ) -> SearchPage:
        """One page of results across levels.

        Raises:
            SearchUnavailableError: if the backing store failed.
        """
        text = (query or "").strip()
        offset = max(0, offset)
        if len(text) < self.min_query_length:
            return SearchPage(offset=offset)

        limit = max(1, min(limit, self.max_results_cap))
        wanted = tuple(dict.fromkeys(GeoLevel(lv) for lv in (levels or self.default_levels)))
        key = CacheKey(
            "search",
            ",".join(lv.value for lv in wanted),
            "",
            f"{text.lower()}|{limit}|{offset}",
        )

        async def _load() -> SearchPage:
            return await self._query(text, wanted, limit=limit, offset=offset)

        try:
            if self._cache is None:
                return await _load()
            return await self._cache.get_or_load(key, _load)
        except StoreError as exc:
            logger.warning("Search unavailable for %r: %s", text, exc)
            raise SearchUnavailableError(str(exc)) from exc

    async def _query(
        self,
        text: str,
        levels: tuple[GeoLevel, ...],
        *,
        limit: int,
        offset: int,
    ) -> SearchPage:
        # Each level returns at most offset+limit rows, so the merged page
        # is exact without fetching whole levels.
        window = offset + limit
        results: dict[str, SearchResult] = {}
        total = 0
        for level in levels:
            rows = await self._store.execute(
                f"search {level.value} names for {text!r}",
                lambda r, lv=level: r.search_by_name(lv, text, limit=window),
            )
            total += await self._store.execute(
                f"count {level.value} names for {text!r}",
                lambda r, lv=level: r.count_by_name(lv, text),
            )
            for row in rows:
                results.setdefault(row["code"], _to_result(level, row))

        ordered = sorted(results.values(), key=lambda r: (r.name.lower(), r.code))
        data = ordered[offset:offset + limit]
        return SearchPage(
            data=data,
            count=len(data),
            total_count=total,
            offset=offset,
            has_more=offset + len(data) < total,
        )


R = TypeVar("R")


class SearchDebouncer(Generic[R]):
    """Caller-side quiet-period coalescing for search-as-you-type.

    Each submit() supersedes the previous one. A call only reaches the
    search function if no newer submit() arrived during the quiet period,
    and its result is only returned if no newer submit() arrived while the
    search ran. Superseded calls return None.
    """

    def __init__(
        self,
        search_fn: Callable[[str], Awaitable[R]],
        *,
        quiet_period_ms: int = 300,
    ) -> None:
        self._search_fn = search_fn
        self._quiet_s = quiet_period_ms / 1000.0
        self._generation = 0

    async def submit(self, query: str) -> R | None:
        self._generation += 1
        mine = self._generation
        await asyncio.sleep(self._quiet_s)
        if mine != self._generation:
            return None
        result = await self._search_fn(query)
        if mine != self._generation:
            logger.debug("Discarding stale search result for %r", query)
            return None
        return result

    def cancel(self) -> None:
        """Supersede any pending submit()."""
        self._generation += 1
