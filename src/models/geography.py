"""Geographic hierarchy models — PSGC reference entities and derived views.

Reference entities mirror the psgc_* tables. ResolvedHierarchy and
PartialHierarchy are derived, read-only results of HierarchyResolver and are
never persisted on their own.
"""

from typing import Literal

from pydantic import Field, model_validator

from src.models.common import (
    BarangayCode,
    CityCode,
    GeoBase,
    GeoLevel,
    HierarchyConfidence,
    ProvinceCode,
    RegionCode,
)


class Option(GeoBase):
    """A single selectable entry: value is the code, label the display name.

    Frozen so cached option lists can be shared between sessions.
    """

    model_config = {**GeoBase.model_config, "frozen": True}

    value: str
    label: str
    attributes: dict[str, str | bool | None] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Reference entities
# ---------------------------------------------------------------------------


class Region(GeoBase):
    code: RegionCode
    name: str


class Province(GeoBase):
    code: ProvinceCode
    name: str
    region_code: RegionCode


class CityMunicipality(GeoBase):
    """City or municipality.

    Exactly one of {province_code present, is_independent} holds.
    """

    code: CityCode
    name: str
    type: str
    province_code: ProvinceCode | None = None
    is_independent: bool = False

    @model_validator(mode="after")
    def _check_independence(self) -> "CityMunicipality":
        if (self.province_code is None) != self.is_independent:
            raise ValueError(
                "province_code must be null if and only if is_independent is true"
            )
        return self


class Barangay(GeoBase):
    code: BarangayCode
    name: str
    city_municipality_code: CityCode


# ---------------------------------------------------------------------------
# Resolved hierarchy
# ---------------------------------------------------------------------------


class ResolvedHierarchy(GeoBase):
    """Full ancestor chain for a leaf code.

    province_* fields are None when the city is independent. Names are None
    when the chain was derived from the code rather than looked up.
    """

    leaf_code: str
    leaf_level: Literal[GeoLevel.CITY, GeoLevel.BARANGAY]
    region_code: str
    region_name: str | None = None
    province_code: str | None = None
    province_name: str | None = None
    city_municipality_code: str
    city_municipality_name: str | None = None
    city_municipality_type: str | None = None
    is_independent: bool = False
    barangay_code: str | None = None
    barangay_name: str | None = None
    confidence: HierarchyConfidence = HierarchyConfidence.VERIFIED
    strategy: str

    @property
    def verified(self) -> bool:
        return self.confidence == HierarchyConfidence.VERIFIED

    def code_for(self, level: GeoLevel) -> str | None:
        """Selected code at a cascade level."""
        return {
            GeoLevel.REGION: self.region_code,
            GeoLevel.PROVINCE: self.province_code,
            GeoLevel.CITY: self.city_municipality_code,
            GeoLevel.BARANGAY: self.barangay_code,
        }[level]

    @property
    def full_address(self) -> str:
        parts = [
            self.barangay_name,
            self.city_municipality_name,
            self.province_name,
            self.region_name,
        ]
        return ", ".join(p for p in parts if p)


class StrategyAttempt(GeoBase):
    """Audit record of one strategy attempt during resolution."""

    strategy: str
    attempt: int
    outcome: Literal["success", "not_found", "transient_error", "error", "skipped"]
    error: str | None = None


class PartialHierarchy(GeoBase):
    """Returned when every resolution strategy failed.

    Carries only the original leaf code and why resolution failed; the form
    falls back to manual entry.
    """

    leaf_code: str
    reason: str
    confidence: HierarchyConfidence = HierarchyConfidence.FAILED
    attempts: list[StrategyAttempt] = Field(default_factory=list)

    @property
    def verified(self) -> bool:
        return False


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class SearchResult(GeoBase):
    """A search hit with its ancestor names for display."""

    model_config = {**GeoBase.model_config, "frozen": True}

    code: str
    name: str
    level: GeoLevel
    full_address: str
    region_code: str | None = None
    province_code: str | None = None
    city_municipality_code: str | None = None

    def as_option(self) -> Option:
        return Option(value=self.code, label=self.name, attributes={"level": self.level.value})


class SearchPage(GeoBase):
    """One page of search results."""

    data: list[SearchResult] = Field(default_factory=list)
    count: int = 0
    total_count: int = 0
    offset: int = 0
    has_more: bool = False
