"""Shared types, enums, and base models used across the domain models."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, Field
from uuid_extensions import uuid7


def utc_now() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def new_uuid7() -> UUID:
    """Generate a new time-sortable UUID v7."""
    return uuid7()


# --- Reusable annotated types ---

UUIDv7 = Annotated[UUID, Field(description="Time-sortable UUID v7.")]
UTCTimestamp = Annotated[
    datetime, Field(description="UTC timezone-aware timestamp.")
]
RegionCode = Annotated[str, Field(pattern=r"^\d{2}$", description="2-digit region code.")]
ProvinceCode = Annotated[str, Field(pattern=r"^\d{4}$", description="4-digit province code.")]
CityCode = Annotated[str, Field(pattern=r"^\d{6}$", description="6-digit city/municipality code.")]
BarangayCode = Annotated[str, Field(pattern=r"^\d{9}$", description="9-digit barangay code.")]


# --- Shared enums ---


class GeoLevel(StrEnum):
    """The four PSGC levels, in tree order."""

    REGION = "region"
    PROVINCE = "province"
    CITY = "city"
    BARANGAY = "barangay"

    @property
    def depth(self) -> int:
        return _LEVEL_DEPTH[self]


_LEVEL_DEPTH: dict[GeoLevel, int] = {
    GeoLevel.REGION: 0,
    GeoLevel.PROVINCE: 1,
    GeoLevel.CITY: 2,
    GeoLevel.BARANGAY: 3,
}

LEVELS: tuple[GeoLevel, ...] = (
    GeoLevel.REGION,
    GeoLevel.PROVINCE,
    GeoLevel.CITY,
    GeoLevel.BARANGAY,
)


class CityType(StrEnum):
    """City / municipality classification."""

    COMPONENT_CITY = "component-city"
    HIGHLY_URBANIZED_CITY = "highly-urbanized-city"
    MUNICIPALITY = "municipality"


class HierarchyConfidence(StrEnum):
    """How a hierarchy was established.

    VERIFIED: every ancestor confirmed by the backing store.
    DERIVED: ancestors sliced from the leaf code, not confirmed.
    FAILED: nothing could be resolved beyond the leaf code itself.
    """

    VERIFIED = "VERIFIED"
    DERIVED = "DERIVED"
    FAILED = "FAILED"


# --- Base model ---


class GeoBase(BaseModel):
    """Base model with common configuration for all domain models."""

    model_config = {
        "populate_by_name": True,
        "ser_json_timedelta": "iso8601",
        "protected_namespaces": (),
    }
