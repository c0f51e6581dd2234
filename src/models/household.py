"""Household models and the structured household code.

Household code format: RRPPMMBBB-SSSS-TTTT-HHHH
- RRPPMMBBB: 9-digit barangay code
- SSSS: subdivision segment, 0000 = none
- TTTT: street segment, 0001 = default
- HHHH: per-barangay sequence, zero-padded, 0001..9999
"""

import re
from uuid import UUID

from pydantic import Field

from src.models.common import (
    GeoBase,
    HierarchyConfidence,
    UTCTimestamp,
    UUIDv7,
    new_uuid7,
    utc_now,
)

NO_SUBDIVISION = "0000"
DEFAULT_STREET = "0001"
MAX_SEQUENCE = 9999

_CODE_RE = re.compile(r"^(\d{9})-(\d{4})-(\d{4})-(\d{4})$")
SEGMENT_RE = re.compile(r"^\d{4}$")


class HouseholdCode(GeoBase):
    """Parsed household code. Immutable once generated."""

    model_config = {**GeoBase.model_config, "frozen": True}

    barangay_code: str = Field(..., pattern=r"^\d{9}$")
    subdivision: str = Field(default=NO_SUBDIVISION, pattern=r"^\d{4}$")
    street: str = Field(default=DEFAULT_STREET, pattern=r"^\d{4}$")
    sequence: int = Field(..., ge=1, le=MAX_SEQUENCE)

    def __str__(self) -> str:
        return (
            f"{self.barangay_code}-{self.subdivision}-{self.street}-"
            f"{self.sequence:04d}"
        )

    @classmethod
    def parse(cls, code: str) -> "HouseholdCode":
        """Parse a RRPPMMBBB-SSSS-TTTT-HHHH string.

        Raises ValueError if the string is not a well-formed household code.
        """
        match = _CODE_RE.match(code)
        if not match:
            raise ValueError(f"Malformed household code: {code!r}")
        barangay, subdivision, street, seq = match.groups()
        return cls(
            barangay_code=barangay,
            subdivision=subdivision,
            street=street,
            sequence=int(seq),
        )


class Household(GeoBase):
    """Household record as stored."""

    household_id: UUIDv7 = Field(default_factory=new_uuid7)
    code: str
    barangay_code: str
    city_municipality_code: str | None = None
    province_code: str | None = None
    region_code: str | None = None
    subdivision_id: UUID | None = None
    street_id: UUID | None = None
    house_number: str = ""
    hierarchy_confidence: HierarchyConfidence = HierarchyConfidence.VERIFIED
    created_at: UTCTimestamp = Field(default_factory=utc_now)
