"""Seed script — load a small PSGC sample into the database.

Creates:
1. Three regions, including NCR (13) whose cities have no province
2. Provinces for the regular regions
3. Cities/municipalities, both component and independent
4. Barangays under each city
5. A subdivision and streets in Barangay Alicia, Quezon City

Idempotent: safe to run multiple times — skips if NCR already exists.

Usage:
    python -m scripts.seed             # against DATABASE_URL from .env
    pytest tests/scripts/test_seed.py  # against aiosqlite in-memory
"""

import asyncio
import sys

from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import (
    BarangayRow,
    CityMunicipalityRow,
    ProvinceRow,
    RegionRow,
    StreetRow,
    SubdivisionRow,
)
from src.models.common import CityType, new_uuid7
from src.models.geography import Barangay, CityMunicipality, Province, Region

# ---------------------------------------------------------------------------
# Sample reference data
# ---------------------------------------------------------------------------

SAMPLE_REGIONS: list[tuple[str, str]] = [
    ("01", "Region I (Ilocos Region)"),
    ("04", "Region IV-A (CALABARZON)"),
    ("13", "National Capital Region (NCR)"),
]

SAMPLE_PROVINCES: list[tuple[str, str, str]] = [
    # code, name, region_code
    ("0128", "Ilocos Norte", "01"),
    ("0421", "Cavite", "04"),
    ("0434", "Laguna", "04"),
]

SAMPLE_CITIES: list[tuple[str, str, str, str | None]] = [
    # code, name, type, province_code (None = independent)
    ("012812", "City of Laoag", CityType.COMPONENT_CITY, "0128"),
    ("012801", "Adams", CityType.MUNICIPALITY, "0128"),
    ("042103", "City of Bacoor", CityType.COMPONENT_CITY, "0421"),
    ("043404", "City of Calamba", CityType.COMPONENT_CITY, "0434"),
    ("137401", "City of Mandaluyong", CityType.HIGHLY_URBANIZED_CITY, None),
    ("137404", "Quezon City", CityType.HIGHLY_URBANIZED_CITY, None),
]

SAMPLE_BARANGAYS: list[tuple[str, str, str]] = [
    # code, name, urban_rural_status
    ("012812001", "San Lorenzo", "Urban"),
    ("012812002", "Santa Joaquina", "Urban"),
    ("012801001", "Adams", "Rural"),
    ("042103001", "Alima", "Urban"),
    ("042103002", "Aniban I", "Urban"),
    ("043404001", "Bagong Kalsada", "Urban"),
    ("043404002", "Banadero", "Urban"),
    ("137401001", "Addition Hills", "Urban"),
    ("137401002", "Bagong Silang", "Urban"),
    ("137404001", "Alicia", "Urban"),
    ("137404002", "Amihan", "Urban"),
    ("137404003", "Apolonio Samson", "Urban"),
]

SAMPLE_SUBDIVISION = ("0001", "Alicia Heights", "Subdivision", "137404001")

SAMPLE_STREETS: list[tuple[str, str, bool]] = [
    # code, name, inside the sample subdivision
    ("0001", "Main Street", False),
    ("0002", "Sampaguita Street", True),
    ("0003", "Ilang-Ilang Street", True),
]

INDEPENDENT_REGION_CODE = "13"


# ---------------------------------------------------------------------------
# Seed functions
# ---------------------------------------------------------------------------


async def seed_psgc(session: AsyncSession) -> dict[str, int]:
    """Insert the sample PSGC tree. Returns row counts per level.

    Every entry is validated through the reference models first, so a
    city with both a province and is_independent fails before any insert.
    """
    regions = [Region(code=c, name=n) for c, n in SAMPLE_REGIONS]
    provinces = [Province(code=c, name=n, region_code=r) for c, n, r in SAMPLE_PROVINCES]
    cities = [
        CityMunicipality(
            code=c, name=n, type=str(t), province_code=p, is_independent=p is None,
        )
        for c, n, t, p in SAMPLE_CITIES
    ]
    barangays = [
        Barangay(code=c, name=n, city_municipality_code=c[:6])
        for c, n, _s in SAMPLE_BARANGAYS
    ]
    urban_rural = {c: s for c, _n, s in SAMPLE_BARANGAYS}

    session.add_all(RegionRow(**r.model_dump()) for r in regions)
    await session.flush()
    session.add_all(ProvinceRow(**p.model_dump(), is_active=True) for p in provinces)
    await session.flush()
    session.add_all(CityMunicipalityRow(**c.model_dump()) for c in cities)
    await session.flush()
    session.add_all(
        BarangayRow(**b.model_dump(), urban_rural_status=urban_rural[b.code])
        for b in barangays
    )
    await session.flush()
    return {
        "regions": len(regions),
        "provinces": len(provinces),
        "cities": len(cities),
        "barangays": len(barangays),
    }


async def seed_address_parts(session: AsyncSession) -> tuple[SubdivisionRow, list[StreetRow]]:
    """Insert the sample subdivision and its streets."""
    code, name, type_, barangay_code = SAMPLE_SUBDIVISION
    subdivision = SubdivisionRow(
        id=new_uuid7(), code=code, name=name, type=type_,
        barangay_code=barangay_code, is_active=True,
    )
    session.add(subdivision)
    await session.flush()

    streets = [
        StreetRow(
            id=new_uuid7(), code=s_code, name=s_name,
            subdivision_id=subdivision.id if inside else None,
            barangay_code=barangay_code, is_active=True,
        )
        for s_code, s_name, inside in SAMPLE_STREETS
    ]
    session.add_all(streets)
    await session.flush()
    return subdivision, streets


async def seed_demo(session: AsyncSession) -> dict:
    """Idempotent sample seed.

    Returns dict with keys: created (bool) and row counts.
    If NCR already exists, returns created=False and skips.
    """
    existing = await session.get(RegionRow, INDEPENDENT_REGION_CODE)
    if existing is not None:
        return {"created": False}

    counts = await seed_psgc(session)
    _subdivision, streets = await seed_address_parts(session)
    return {"created": True, **counts, "subdivisions": 1, "streets": len(streets)}


async def _run_seed() -> None:
    """Run the seed against the configured database."""
    from src.db.session import async_session_factory

    async with async_session_factory() as session:
        result = await seed_demo(session)
        if not result["created"]:
            print("PSGC sample already seeded (region 13 exists). Skipping.")
            return
        await session.commit()

    print("Seed complete.")
    for key in ("regions", "provinces", "cities", "barangays", "subdivisions", "streets"):
        print(f"  {key:<13} {result[key]:>4}")
    _print_summary()


def _print_summary() -> None:
    print()
    print("Sample PSGC tree:")
    for r_code, r_name in SAMPLE_REGIONS:
        print(f"  {r_code}  {r_name}")
        for c_code, c_name, _t, p_code in SAMPLE_CITIES:
            region = (
                c_code[:2] if p_code is None
                else next(r for p, _n, r in SAMPLE_PROVINCES if p == p_code)
            )
            if region == r_code:
                print(f"      {c_code}  {c_name}")


if __name__ == "__main__":
    try:
        asyncio.run(_run_seed())
    except KeyboardInterrupt:
        sys.exit(1)
