"""SQLAlchemy ORM table models.

Reference data (never mutated by the engine):
- RegionRow, ProvinceRow, CityMunicipalityRow, BarangayRow (PSGC tree)
- SubdivisionRow, StreetRow (barangay-local address parts)

Operational:
- HouseholdRow (append-only; code is UNIQUE and immutable once written)

The psgc_address_hierarchy view pre-joins the four PSGC levels keyed by
barangay code. Independent cities have no province, so the region is
taken from the first two digits of the city code.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    DDL,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.db.session import Base

ADDRESS_HIERARCHY_VIEW = "psgc_address_hierarchy"

_ADDRESS_HIERARCHY_SELECT = """
SELECT
    r.code AS region_code,
    r.name AS region_name,
    p.code AS province_code,
    p.name AS province_name,
    c.code AS city_municipality_code,
    c.name AS city_municipality_name,
    c.type AS city_municipality_type,
    c.is_independent AS is_independent,
    b.code AS barangay_code,
    b.name AS barangay_name
FROM psgc_barangays b
JOIN psgc_cities_municipalities c ON b.city_municipality_code = c.code
LEFT JOIN psgc_provinces p ON c.province_code = p.code
JOIN psgc_regions r ON r.code = COALESCE(p.region_code, substr(c.code, 1, 2))
"""


# ---------------------------------------------------------------------------
# PSGC reference tree
# ---------------------------------------------------------------------------


class RegionRow(Base):
    __tablename__ = "psgc_regions"

    code: Mapped[str] = mapped_column(String(10), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class ProvinceRow(Base):
    __tablename__ = "psgc_provinces"

    code: Mapped[str] = mapped_column(String(10), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    region_code: Mapped[str] = mapped_column(
        ForeignKey("psgc_regions.code"), nullable=False, index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class CityMunicipalityRow(Base):
    """City or municipality. province_code is NULL iff is_independent."""

    __tablename__ = "psgc_cities_municipalities"

    code: Mapped[str] = mapped_column(String(10), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    province_code: Mapped[str | None] = mapped_column(
        ForeignKey("psgc_provinces.code"), nullable=True, index=True,
    )
    is_independent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class BarangayRow(Base):
    __tablename__ = "psgc_barangays"

    code: Mapped[str] = mapped_column(String(10), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    city_municipality_code: Mapped[str] = mapped_column(
        ForeignKey("psgc_cities_municipalities.code"), nullable=False, index=True,
    )
    urban_rural_status: Mapped[str | None] = mapped_column(String(20), nullable=True)


# ---------------------------------------------------------------------------
# Barangay-local address parts
# ---------------------------------------------------------------------------


class SubdivisionRow(Base):
    """Subdivision / sitio / purok inside a barangay.

    code is the 4-digit SSSS segment used in household codes.
    """

    __tablename__ = "geo_subdivisions"
    __table_args__ = (
        UniqueConstraint("barangay_code", "code", name="uq_subdivision_barangay_code"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(4), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default="Subdivision")
    barangay_code: Mapped[str] = mapped_column(
        ForeignKey("psgc_barangays.code"), nullable=False, index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class StreetRow(Base):
    """Street inside a barangay, optionally inside a subdivision.

    code is the 4-digit TTTT segment used in household codes.
    """

    __tablename__ = "geo_streets"
    __table_args__ = (
        UniqueConstraint("barangay_code", "code", name="uq_street_barangay_code"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(4), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    subdivision_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("geo_subdivisions.id"), nullable=True,
    )
    barangay_code: Mapped[str] = mapped_column(
        ForeignKey("psgc_barangays.code"), nullable=False, index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ---------------------------------------------------------------------------
# Households — OPERATIONAL (code immutable)
# ---------------------------------------------------------------------------


class HouseholdRow(Base):
    """Household record. code format: RRPPMMBBB-SSSS-TTTT-HHHH."""

    __tablename__ = "households"
    __table_args__ = (
        UniqueConstraint("code", name="uq_households_code"),
        Index("ix_households_barangay_code", "barangay_code"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    # Not a foreign key: DERIVED households may name an unlisted barangay.
    barangay_code: Mapped[str] = mapped_column(String(10), nullable=False)
    city_municipality_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    province_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    region_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    subdivision_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("geo_subdivisions.id"), nullable=True,
    )
    street_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("geo_streets.id"), nullable=True,
    )
    house_number: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    # VERIFIED, DERIVED or FAILED: how the ancestor codes above were obtained.
    hierarchy_confidence: Mapped[str] = mapped_column(
        String(20), nullable=False, default="VERIFIED",
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Pre-joined hierarchy view
# ---------------------------------------------------------------------------

event.listen(
    Base.metadata,
    "after_create",
    DDL(
        f"CREATE VIEW IF NOT EXISTS {ADDRESS_HIERARCHY_VIEW} AS {_ADDRESS_HIERARCHY_SELECT}"
    ).execute_if(dialect="sqlite"),
)
event.listen(
    Base.metadata,
    "after_create",
    DDL(
        f"CREATE OR REPLACE VIEW {ADDRESS_HIERARCHY_VIEW} AS {_ADDRESS_HIERARCHY_SELECT}"
    ).execute_if(dialect="postgresql"),
)
event.listen(
    Base.metadata,
    "before_drop",
    DDL(f"DROP VIEW IF EXISTS {ADDRESS_HIERARCHY_VIEW}"),
)
