"""PSGC reference tables, address parts, households, hierarchy view.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- PSGC reference tree --
    op.create_table(
        "psgc_regions",
        sa.Column("code", sa.String(10), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
    )

    op.create_table(
        "psgc_provinces",
        sa.Column("code", sa.String(10), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("region_code", sa.String(10),
                  sa.ForeignKey("psgc_regions.code"), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default=sa.true(), nullable=False),
    )
    op.create_index("ix_psgc_provinces_region_code", "psgc_provinces", ["region_code"])

    op.create_table(
        "psgc_cities_municipalities",
        sa.Column("code", sa.String(10), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("province_code", sa.String(10),
                  sa.ForeignKey("psgc_provinces.code"), nullable=True),
        sa.Column("is_independent", sa.Boolean, server_default=sa.false(), nullable=False),
    )
    op.create_index(
        "ix_psgc_cities_municipalities_province_code",
        "psgc_cities_municipalities", ["province_code"],
    )

    op.create_table(
        "psgc_barangays",
        sa.Column("code", sa.String(10), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("city_municipality_code", sa.String(10),
                  sa.ForeignKey("psgc_cities_municipalities.code"), nullable=False),
        sa.Column("urban_rural_status", sa.String(20), nullable=True),
    )
    op.create_index(
        "ix_psgc_barangays_city_municipality_code",
        "psgc_barangays", ["city_municipality_code"],
    )

    # -- Barangay-local address parts --
    op.create_table(
        "geo_subdivisions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(4), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("type", sa.String(50), server_default="Subdivision", nullable=False),
        sa.Column("barangay_code", sa.String(10),
                  sa.ForeignKey("psgc_barangays.code"), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default=sa.true(), nullable=False),
        sa.UniqueConstraint("barangay_code", "code", name="uq_subdivision_barangay_code"),
    )
    op.create_index("ix_geo_subdivisions_barangay_code", "geo_subdivisions", ["barangay_code"])

    op.create_table(
        "geo_streets",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(4), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("subdivision_id", UUID(as_uuid=True),
                  sa.ForeignKey("geo_subdivisions.id"), nullable=True),
        sa.Column("barangay_code", sa.String(10),
                  sa.ForeignKey("psgc_barangays.code"), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default=sa.true(), nullable=False),
        sa.UniqueConstraint("barangay_code", "code", name="uq_street_barangay_code"),
    )
    op.create_index("ix_geo_streets_barangay_code", "geo_streets", ["barangay_code"])

    # -- Households (code UNIQUE, immutable) --
    op.create_table(
        "households",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(50), nullable=False),
        # No FK: derived-confidence households may reference a barangay the
        # reference tables do not (yet) contain.
        sa.Column("barangay_code", sa.String(10), nullable=False),
        sa.Column("city_municipality_code", sa.String(10), nullable=True),
        sa.Column("province_code", sa.String(10), nullable=True),
        sa.Column("region_code", sa.String(10), nullable=True),
        sa.Column("subdivision_id", UUID(as_uuid=True),
                  sa.ForeignKey("geo_subdivisions.id"), nullable=True),
        sa.Column("street_id", UUID(as_uuid=True),
                  sa.ForeignKey("geo_streets.id"), nullable=True),
        sa.Column("house_number", sa.String(50), server_default="", nullable=False),
        sa.Column("hierarchy_confidence", sa.String(20),
                  server_default="VERIFIED", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("code", name="uq_households_code"),
    )
    op.create_index("ix_households_barangay_code", "households", ["barangay_code"])

    # -- Pre-joined hierarchy view --
    op.execute(
        """
        CREATE OR REPLACE VIEW psgc_address_hierarchy AS
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
    )


def downgrade() -> None:
    op.execute("DROP VIEW IF EXISTS psgc_address_hierarchy")
    op.drop_table("households")
    op.drop_table("geo_streets")
    op.drop_table("geo_subdivisions")
    op.drop_table("psgc_barangays")
    op.drop_table("psgc_cities_municipalities")
    op.drop_table("psgc_provinces")
    op.drop_table("psgc_regions")
