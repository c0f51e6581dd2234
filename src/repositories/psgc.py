"""PSGC reference-data repository — regions, provinces, cities, barangays.

Read-only. Repos take AsyncSession and never commit. Ordering is
alphabetical by name, case-insensitive, ties broken by code.
"""

from sqlalchemy import Select, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from src.db.tables import (
    ADDRESS_HIERARCHY_VIEW,
    BarangayRow,
    CityMunicipalityRow,
    ProvinceRow,
    RegionRow,
    StreetRow,
    SubdivisionRow,
)
from src.models.common import GeoLevel

ADDRESS_PART_LIMIT = 100


def contains_pattern(query: str) -> str:
    """Build an escaped LIKE pattern matching query as a substring."""
    escaped = (
        query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )
    return f"%{escaped}%"


def _region_for_city():
    """Join condition: province's region, or the city code prefix when
    the city is independent."""
    return RegionRow.code == func.coalesce(
        ProvinceRow.region_code, func.substr(CityMunicipalityRow.code, 1, 2),
    )


class PSGCRepository:
    """Queries over the four-level PSGC tree."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ----- Children-of -----

    async def list_regions(self) -> list[RegionRow]:
        result = await self._session.execute(
            select(RegionRow).order_by(func.lower(RegionRow.name), RegionRow.code)
        )
        return list(result.scalars().all())

    async def list_provinces(self, region_code: str) -> list[ProvinceRow]:
        result = await self._session.execute(
            select(ProvinceRow)
            .where(
                ProvinceRow.region_code == region_code,
                ProvinceRow.is_active.is_(True),
            )
            .order_by(func.lower(ProvinceRow.name), ProvinceRow.code)
        )
        return list(result.scalars().all())

    async def list_cities(self, province_code: str) -> list[CityMunicipalityRow]:
        result = await self._session.execute(
            select(CityMunicipalityRow)
            .where(CityMunicipalityRow.province_code == province_code)
            .order_by(func.lower(CityMunicipalityRow.name), CityMunicipalityRow.code)
        )
        return list(result.scalars().all())

    async def list_independent_cities(
        self, region_code: str,
    ) -> list[CityMunicipalityRow]:
        """Cities with no province whose code falls under region_code."""
        result = await self._session.execute(
            select(CityMunicipalityRow)
            .where(
                CityMunicipalityRow.is_independent.is_(True),
                CityMunicipalityRow.province_code.is_(None),
                func.substr(CityMunicipalityRow.code, 1, 2) == region_code,
            )
            .order_by(func.lower(CityMunicipalityRow.name), CityMunicipalityRow.code)
        )
        return list(result.scalars().all())

    async def list_barangays(self, city_code: str) -> list[BarangayRow]:
        result = await self._session.execute(
            select(BarangayRow)
            .where(BarangayRow.city_municipality_code == city_code)
            .order_by(func.lower(BarangayRow.name), BarangayRow.code)
        )
        return list(result.scalars().all())

    # ----- Hierarchy lookups -----

    async def get_hierarchy_from_view(self, barangay_code: str) -> dict | None:
        """Read one row of the pre-joined hierarchy view.

        Raises whatever the driver raises if the view does not exist.
        """
        result = await self._session.execute(
            text(
                f"SELECT * FROM {ADDRESS_HIERARCHY_VIEW} "
                "WHERE barangay_code = :code"
            ),
            {"code": barangay_code},
        )
        row = result.mappings().first()
        return dict(row) if row is not None else None

    async def get_barangay_chain(
        self, barangay_code: str,
    ) -> tuple[BarangayRow, CityMunicipalityRow, ProvinceRow | None, RegionRow] | None:
        """Explicit barangay → city → province → region join."""
        stmt = (
            select(BarangayRow, CityMunicipalityRow, ProvinceRow, RegionRow)
            .join(
                CityMunicipalityRow,
                BarangayRow.city_municipality_code == CityMunicipalityRow.code,
            )
            .outerjoin(ProvinceRow, CityMunicipalityRow.province_code == ProvinceRow.code)
            .join(RegionRow, _region_for_city())
            .where(BarangayRow.code == barangay_code)
        )
        result = await self._session.execute(stmt)
        row = result.first()
        return tuple(row) if row is not None else None

    async def get_city_chain(
        self, city_code: str,
    ) -> tuple[CityMunicipalityRow, ProvinceRow | None, RegionRow] | None:
        """Explicit city → province → region join."""
        stmt = (
            select(CityMunicipalityRow, ProvinceRow, RegionRow)
            .outerjoin(ProvinceRow, CityMunicipalityRow.province_code == ProvinceRow.code)
            .join(RegionRow, _region_for_city())
            .where(CityMunicipalityRow.code == city_code)
        )
        result = await self._session.execute(stmt)
        row = result.first()
        return tuple(row) if row is not None else None

    # ----- Name search -----

    def _search_stmt(self, level: GeoLevel, query: str) -> Select:
        pattern = contains_pattern(query)
        if level == GeoLevel.REGION:
            return (
                select(RegionRow.code, RegionRow.name, RegionRow.code.label("region_code"),
                       RegionRow.name.label("region_name"))
                .where(RegionRow.name.ilike(pattern, escape="\\"))
            )
        if level == GeoLevel.PROVINCE:
            return (
                select(ProvinceRow.code, ProvinceRow.name,
                       RegionRow.code.label("region_code"),
                       RegionRow.name.label("region_name"),
                       ProvinceRow.code.label("province_code"),
                       ProvinceRow.name.label("province_name"))
                .join(RegionRow, ProvinceRow.region_code == RegionRow.code)
                .where(ProvinceRow.name.ilike(pattern, escape="\\"))
            )
        if level == GeoLevel.CITY:
            return (
                select(CityMunicipalityRow.code, CityMunicipalityRow.name,
                       RegionRow.code.label("region_code"),
                       RegionRow.name.label("region_name"),
                       ProvinceRow.code.label("province_code"),
                       ProvinceRow.name.label("province_name"),
                       CityMunicipalityRow.code.label("city_municipality_code"),
                       CityMunicipalityRow.name.label("city_municipality_name"))
                .outerjoin(ProvinceRow, CityMunicipalityRow.province_code == ProvinceRow.code)
                .join(RegionRow, _region_for_city())
                .where(CityMunicipalityRow.name.ilike(pattern, escape="\\"))
            )
        city = aliased(CityMunicipalityRow)
        return (
            select(BarangayRow.code, BarangayRow.name,
                   RegionRow.code.label("region_code"),
                   RegionRow.name.label("region_name"),
                   ProvinceRow.code.label("province_code"),
                   ProvinceRow.name.label("province_name"),
                   city.code.label("city_municipality_code"),
                   city.name.label("city_municipality_name"),
                   BarangayRow.name.label("barangay_name"))
            .join(city, BarangayRow.city_municipality_code == city.code)
            .outerjoin(ProvinceRow, city.province_code == ProvinceRow.code)
            .join(RegionRow, RegionRow.code == func.coalesce(
                ProvinceRow.region_code, func.substr(city.code, 1, 2),
            ))
            .where(BarangayRow.name.ilike(pattern, escape="\\"))
        )

    async def search_by_name(
        self, level: GeoLevel, query: str, *, limit: int,
    ) -> list[dict]:
        """Case-insensitive substring match on name, capped at limit."""
        stmt = self._search_stmt(level, query)
        cols = stmt.selected_columns
        stmt = stmt.order_by(func.lower(cols["name"]), cols["code"]).limit(limit)
        result = await self._session.execute(stmt)
        return [dict(row) for row in result.mappings().all()]

    async def count_by_name(self, level: GeoLevel, query: str) -> int:
        stmt = self._search_stmt(level, query).subquery()
        result = await self._session.execute(select(func.count()).select_from(stmt))
        return int(result.scalar_one())


class AddressPartRepository:
    """Subdivisions and streets within a barangay."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_subdivisions(
        self, barangay_code: str, *, search: str | None = None,
    ) -> list[SubdivisionRow]:
        stmt = select(SubdivisionRow).where(
            SubdivisionRow.barangay_code == barangay_code,
            SubdivisionRow.is_active.is_(True),
        )
        if search:
            stmt = stmt.where(SubdivisionRow.name.ilike(contains_pattern(search), escape="\\"))
        result = await self._session.execute(
            stmt.order_by(func.lower(SubdivisionRow.name)).limit(ADDRESS_PART_LIMIT)
        )
        return list(result.scalars().all())

    async def list_streets(
        self,
        barangay_code: str,
        *,
        subdivision_id=None,
        search: str | None = None,
    ) -> list[StreetRow]:
        stmt = select(StreetRow).where(
            StreetRow.barangay_code == barangay_code,
            StreetRow.is_active.is_(True),
        )
        if subdivision_id is not None:
            stmt = stmt.where(StreetRow.subdivision_id == subdivision_id)
        if search:
            stmt = stmt.where(StreetRow.name.ilike(contains_pattern(search), escape="\\"))
        result = await self._session.execute(
            stmt.order_by(func.lower(StreetRow.name)).limit(ADDRESS_PART_LIMIT)
        )
        return list(result.scalars().all())

    async def get_subdivision(self, subdivision_id) -> SubdivisionRow | None:
        return await self._session.get(SubdivisionRow, subdivision_id)

    async def get_street(self, street_id) -> StreetRow | None:
        return await self._session.get(StreetRow, street_id)
