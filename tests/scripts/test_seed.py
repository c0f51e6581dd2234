"""Tests for the seed script — verifies the sample PSGC tree loads and is consistent."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from scripts.seed import (
    SAMPLE_BARANGAYS,
    SAMPLE_CITIES,
    SAMPLE_STREETS,
    seed_demo,
)
from src.db.tables import (
    BarangayRow,
    CityMunicipalityRow,
    ProvinceRow,
    RegionRow,
    StreetRow,
)
from src.models.geography import CityMunicipality


class TestSeedDemo:
    @pytest.mark.anyio
    async def test_counts(self, db_session: AsyncSession) -> None:
        result = await seed_demo(db_session)
        assert result == {
            "created": True,
            "regions": 3,
            "provinces": 3,
            "cities": len(SAMPLE_CITIES),
            "barangays": len(SAMPLE_BARANGAYS),
            "subdivisions": 1,
            "streets": len(SAMPLE_STREETS),
        }
        for table, expected in (
            (RegionRow, 3),
            (ProvinceRow, 3),
            (CityMunicipalityRow, len(SAMPLE_CITIES)),
            (BarangayRow, len(SAMPLE_BARANGAYS)),
            (StreetRow, len(SAMPLE_STREETS)),
        ):
            count = (await db_session.execute(
                select(func.count()).select_from(table)
            )).scalar_one()
            assert count == expected, table.__tablename__

    @pytest.mark.anyio
    async def test_second_run_is_a_no_op(self, db_session: AsyncSession) -> None:
        await seed_demo(db_session)
        assert await seed_demo(db_session) == {"created": False}
        count = (await db_session.execute(
            select(func.count()).select_from(RegionRow)
        )).scalar_one()
        assert count == 3

    @pytest.mark.anyio
    async def test_no_provinces_in_independent_region(self, db_session: AsyncSession) -> None:
        await seed_demo(db_session)
        rows = (await db_session.execute(
            select(ProvinceRow).where(ProvinceRow.region_code == "13")
        )).scalars().all()
        assert rows == []

    @pytest.mark.anyio
    async def test_cities_satisfy_independence_invariant(
        self, db_session: AsyncSession,
    ) -> None:
        await seed_demo(db_session)
        rows = (await db_session.execute(select(CityMunicipalityRow))).scalars().all()
        for row in rows:
            CityMunicipality(
                code=row.code, name=row.name, type=row.type,
                province_code=row.province_code, is_independent=row.is_independent,
            )

    def test_barangay_codes_extend_their_city(self) -> None:
        city_codes = {c for c, *_ in SAMPLE_CITIES}
        for code, _name, _status in SAMPLE_BARANGAYS:
            assert len(code) == 9
            assert code[:6] in city_codes
