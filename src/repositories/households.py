"""Household repository.

Repos take AsyncSession, call add()/flush() only — never commit().
The households.code UNIQUE constraint surfaces as IntegrityError on flush;
callers decide whether to retry.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import HouseholdRow
from src.models.common import HierarchyConfidence, utc_now


class HouseholdRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def count_by_barangay(self, barangay_code: str) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(HouseholdRow)
            .where(HouseholdRow.barangay_code == barangay_code)
        )
        return int(result.scalar_one())

    async def create(
        self,
        *,
        household_id: UUID,
        code: str,
        barangay_code: str,
        city_municipality_code: str | None,
        province_code: str | None,
        region_code: str | None,
        subdivision_id: UUID | None = None,
        street_id: UUID | None = None,
        house_number: str = "",
        hierarchy_confidence: HierarchyConfidence = HierarchyConfidence.VERIFIED,
    ) -> HouseholdRow:
        row = HouseholdRow(
            id=household_id, code=code, barangay_code=barangay_code,
            city_municipality_code=city_municipality_code,
            province_code=province_code, region_code=region_code,
            subdivision_id=subdivision_id, street_id=street_id,
            house_number=house_number,
            hierarchy_confidence=HierarchyConfidence(hierarchy_confidence).value,
            created_at=utc_now(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_by_code(self, code: str) -> HouseholdRow | None:
        result = await self._session.execute(
            select(HouseholdRow).where(HouseholdRow.code == code)
        )
        return result.scalar_one_or_none()

    async def list_by_barangay(self, barangay_code: str) -> list[HouseholdRow]:
        result = await self._session.execute(
            select(HouseholdRow)
            .where(HouseholdRow.barangay_code == barangay_code)
            .order_by(HouseholdRow.code)
        )
        return list(result.scalars().all())

    async def list_codes(self, barangay_code: str) -> list[str]:
        result = await self._session.execute(
            select(HouseholdRow.code).where(HouseholdRow.barangay_code == barangay_code)
        )
        return list(result.scalars().all())
