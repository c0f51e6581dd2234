"""HierarchyStore — query layer over the PSGC reference tables.

Stateless: every call opens its own short-lived session from the session
factory, so concurrent form sessions can share one store. Each call is
bounded by a timeout; timeouts and connection failures surface as
TransientStoreError, other database failures as StoreError. Unknown or
empty parent codes yield an empty list, never an error.

Option lists are served through the shared ResultCache when one is given.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.tables import BarangayRow, CityMunicipalityRow, ProvinceRow, RegionRow
from src.geography.cache import CacheKey, ResultCache
from src.geography.errors import StoreError, TransientStoreError
from src.models.common import GeoLevel
from src.models.geography import Option
from src.repositories.psgc import AddressPartRepository, PSGCRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_INDEPENDENT_REGION = "13"
DEFAULT_QUERY_TIMEOUT_S = 2.0

_TRANSIENT_DB_ERRORS = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    PoolTimeoutError,
)


def _region_option(row: RegionRow) -> Option:
    return Option(value=row.code, label=row.name)


def _province_option(row: ProvinceRow) -> Option:
    return Option(value=row.code, label=row.name, attributes={"region_code": row.region_code})


def _city_option(row: CityMunicipalityRow) -> Option:
    return Option(
        value=row.code,
        label=row.name,
        attributes={
            "type": row.type,
            "province_code": row.province_code,
            "is_independent": row.is_independent,
        },
    )


def _barangay_option(row: BarangayRow) -> Option:
    return Option(
        value=row.code,
        label=row.name,
        attributes={"city_municipality_code": row.city_municipality_code},
    )


class HierarchyStore:
    """children-of / independent-cities-of lookups over the PSGC tree."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache: ResultCache | None = None,
        independent_region_code: str = DEFAULT_INDEPENDENT_REGION,
        timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_S,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self.independent_region_code = independent_region_code
        self.timeout_seconds = timeout_seconds

    def is_independent_region(self, region_code: str | None) -> bool:
        return bool(region_code) and region_code == self.independent_region_code

    # ----- Query execution -----

    async def execute(
        self,
        description: str,
        fn: Callable[[PSGCRepository], Awaitable[T]],
        *,
        timeout: float | None = None,
        repository: type = PSGCRepository,
    ) -> T:
        """Run fn against a fresh repository with a bounded timeout.

        Raises:
            TransientStoreError: on timeout or connection-level failure.
            StoreError: on any other database error.
        """
        limit = self.timeout_seconds if timeout is None else timeout

        async def _call() -> T:
            async with self._session_factory() as session:
                return await fn(repository(session))

        try:
            return await asyncio.wait_for(_call(), timeout=limit)
        except TimeoutError as exc:
            logger.warning("Store query timed out after %.2fs: %s", limit, description)
            raise TransientStoreError(
                f"{description} timed out after {limit:.2f}s"
            ) from exc
        except _TRANSIENT_DB_ERRORS as exc:
            logger.warning("Store query failed (transient): %s: %s", description, exc)
            raise TransientStoreError(f"{description} failed: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"{description} failed: {exc}") from exc

    async def _cached_options(
        self,
        key: CacheKey,
        loader: Callable[[], Awaitable[list[Option]]],
    ) -> list[Option]:
        async def _load() -> tuple[Option, ...]:
            return tuple(await loader())

        if self._cache is None:
            return list(await _load())
        return list(await self._cache.get_or_load(key, _load))

    # ----- children-of -----

    async def children_of(self, level: GeoLevel, parent_code: str | None = None) -> list[Option]:
        """Options at level whose parent is parent_code.

        level=REGION ignores parent_code and lists every region.
        """
        level = GeoLevel(level)
        if level != GeoLevel.REGION and not parent_code:
            return []
        key = CacheKey("children_of", level.value, parent_code or "")

        async def _load() -> list[Option]:
            if level == GeoLevel.REGION:
                rows = await self.execute("list regions", lambda r: r.list_regions())
                return [_region_option(r) for r in rows]
            if level == GeoLevel.PROVINCE:
                rows = await self.execute(
                    f"list provinces of {parent_code}",
                    lambda r: r.list_provinces(parent_code),
                )
                return [_province_option(r) for r in rows]
            if level == GeoLevel.CITY:
                rows = await self.execute(
                    f"list cities of {parent_code}",
                    lambda r: r.list_cities(parent_code),
                )
                return [_city_option(r) for r in rows]
            rows = await self.execute(
                f"list barangays of {parent_code}",
                lambda r: r.list_barangays(parent_code),
            )
            return [_barangay_option(r) for r in rows]

        return await self._cached_options(key, _load)

    async def independent_cities_of(self, region_code: str | None) -> list[Option]:
        """Cities directly under region_code (no province)."""
        if not region_code:
            return []
        key = CacheKey("independent_cities_of", GeoLevel.CITY.value, region_code)

        async def _load() -> list[Option]:
            rows = await self.execute(
                f"list independent cities of {region_code}",
                lambda r: r.list_independent_cities(region_code),
            )
            return [_city_option(r) for r in rows]

        return await self._cached_options(key, _load)

    # ----- Barangay-local address parts -----

    async def subdivisions_of(
        self, barangay_code: str | None, *, search: str | None = None,
    ) -> list[Option]:
        if not barangay_code:
            return []
        rows = await self.execute(
            f"list subdivisions of {barangay_code}",
            lambda r: r.list_subdivisions(barangay_code, search=search),
            repository=AddressPartRepository,
        )
        return [
            Option(
                value=str(row.id),
                label=row.name,
                attributes={"code": row.code, "type": row.type,
                            "barangay_code": row.barangay_code},
            )
            for row in rows
        ]

    async def streets_of(
        self,
        barangay_code: str | None,
        *,
        subdivision_id=None,
        search: str | None = None,
    ) -> list[Option]:
        if not barangay_code:
            return []
        rows = await self.execute(
            f"list streets of {barangay_code}",
            lambda r: r.list_streets(
                barangay_code, subdivision_id=subdivision_id, search=search,
            ),
            repository=AddressPartRepository,
        )
        return [
            Option(
                value=str(row.id),
                label=row.name,
                attributes={
                    "code": row.code,
                    "subdivision_id": str(row.subdivision_id) if row.subdivision_id else None,
                    "barangay_code": row.barangay_code,
                },
            )
            for row in rows
        ]
