"""CodeGenerator — mint RRPPMMBBB-SSSS-TTTT-HHHH household codes.

sequence = (households already under the barangay) + 1, zero-padded to 4
digits. The count-then-insert is not atomic across sessions; the UNIQUE
constraint on households.code is the arbiter. On a collision the insert is
rolled back to its SAVEPOINT and retried with a recomputed sequence, up to
max_attempts, then UniquenessConflictError is raised.

A sequence above 9999 raises CapacityExceededError; it is never truncated
and never retried.
"""

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import HouseholdRow
from src.geography.errors import CapacityExceededError, UniquenessConflictError
from src.models.common import HierarchyConfidence, new_uuid7
from src.models.geography import PartialHierarchy, ResolvedHierarchy
from src.models.household import (
    DEFAULT_STREET,
    MAX_SEQUENCE,
    NO_SUBDIVISION,
    SEGMENT_RE,
    HouseholdCode,
)
from src.repositories.households import HouseholdRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


def _segment(value: str | None, default: str, label: str) -> str:
    if value is None or value == "":
        return default
    if not SEGMENT_RE.match(value):
        raise ValueError(f"{label} code must be 4 digits, got {value!r}")
    return value


def _max_sequence(codes: list[str]) -> int:
    highest = 0
    for code in codes:
        try:
            highest = max(highest, HouseholdCode.parse(code).sequence)
        except ValueError:
            logger.warning("Ignoring malformed household code %r", code)
    return highest


def _is_unique_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate key" in message


class CodeGenerator:
    """Builds household codes and inserts household rows.

    Works inside the caller's Unit-of-Work session: add()/flush() only.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._session = session
        self._repo = HouseholdRepository(session)
        self.max_attempts = max_attempts

    @staticmethod
    def compose(
        barangay_code: str,
        sequence: int,
        subdivision_code: str | None = None,
        street_code: str | None = None,
    ) -> HouseholdCode:
        """Pure composition step.

        Raises:
            CapacityExceededError: if sequence > 9999.
            ValueError: on malformed segments.
        """
        if sequence > MAX_SEQUENCE:
            raise CapacityExceededError(barangay_code, sequence)
        return HouseholdCode(
            barangay_code=barangay_code,
            subdivision=_segment(subdivision_code, NO_SUBDIVISION, "Subdivision"),
            street=_segment(street_code, DEFAULT_STREET, "Street"),
            sequence=sequence,
        )

    async def generate(
        self,
        barangay_code: str,
        subdivision_code: str | None = None,
        street_code: str | None = None,
    ) -> HouseholdCode:
        """Next code for barangay_code given the current household count.

        Deterministic: without an intervening insert, repeated calls return
        the same code.
        """
        count = await self._repo.count_by_barangay(barangay_code)
        return self.compose(barangay_code, count + 1, subdivision_code, street_code)

    async def _regenerate(
        self,
        barangay_code: str,
        subdivision_code: str | None,
        street_code: str | None,
    ) -> HouseholdCode:
        # After a collision, count+1 can keep colliding when earlier rows
        # were removed; step past the highest sequence in use.
        count = await self._repo.count_by_barangay(barangay_code)
        highest = _max_sequence(await self._repo.list_codes(barangay_code))
        return self.compose(
            barangay_code, max(count, highest) + 1, subdivision_code, street_code,
        )

    async def create_household(
        self,
        *,
        barangay_code: str,
        hierarchy: ResolvedHierarchy | PartialHierarchy | None = None,
        subdivision_id: UUID | None = None,
        subdivision_code: str | None = None,
        street_id: UUID | None = None,
        street_code: str | None = None,
        house_number: str = "",
    ) -> HouseholdRow:
        """Generate a code and insert the household row.

        Ancestor codes come from hierarchy when it is a ResolvedHierarchy
        (verified or derived); a PartialHierarchy leaves them empty. The
        chain's confidence is stored with the row; without a resolved chain
        it is FAILED.

        Raises:
            CapacityExceededError: sequence would exceed 9999.
            UniquenessConflictError: collisions persisted for max_attempts.
        """
        resolved = hierarchy if isinstance(hierarchy, ResolvedHierarchy) else None
        confidence = resolved.confidence if resolved else HierarchyConfidence.FAILED
        code = await self.generate(barangay_code, subdivision_code, street_code)

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                code = await self._regenerate(barangay_code, subdivision_code, street_code)
            try:
                async with self._session.begin_nested():
                    row = await self._repo.create(
                        household_id=new_uuid7(),
                        code=str(code),
                        barangay_code=barangay_code,
                        city_municipality_code=(
                            resolved.city_municipality_code if resolved else None
                        ),
                        province_code=resolved.province_code if resolved else None,
                        region_code=resolved.region_code if resolved else None,
                        subdivision_id=subdivision_id,
                        street_id=street_id,
                        house_number=house_number,
                        hierarchy_confidence=confidence,
                    )
            except IntegrityError as exc:
                if not _is_unique_violation(exc):
                    raise
                logger.warning(
                    "Household code %s collided (attempt %d/%d) for barangay %s",
                    code, attempt, self.max_attempts, barangay_code,
                )
                continue
            logger.info("Created household %s (attempt %d)", row.code, attempt)
            return row

        logger.error(
            "Giving up on household code for barangay %s after %d attempts",
            barangay_code, self.max_attempts,
        )
        raise UniquenessConflictError(barangay_code, self.max_attempts, str(code))
