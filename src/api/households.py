"""FastAPI household endpoints.

POST /v1/households        — resolve the barangay's hierarchy, mint a code, insert
GET  /v1/households/{code} — fetch one household by its code

Hierarchy auto-fill is best effort: a derived (unverified) chain is still
accepted, stored and echoed back as hierarchy_confidence. Only code generation
failures are fatal for the request.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from src.api.dependencies import (
    get_code_generator,
    get_hierarchy_resolver,
    get_hierarchy_store,
    get_household_repo,
)
from src.db.tables import HouseholdRow
from src.geography.errors import (
    CapacityExceededError,
    StoreError,
    UniquenessConflictError,
)
from src.geography.households import CodeGenerator
from src.geography.resolver import HierarchyResolver
from src.geography.store import HierarchyStore
from src.models.common import HierarchyConfidence
from src.models.household import Household
from src.repositories.households import HouseholdRepository
from src.repositories.psgc import AddressPartRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/households", tags=["households"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class CreateHouseholdRequest(BaseModel):
    barangay_code: str = Field(..., pattern=r"^\d{9}$")
    subdivision_id: UUID | None = None
    street_id: UUID | None = None
    house_number: str = Field(default="", max_length=50)


def _to_household(row: HouseholdRow) -> Household:
    return Household(
        household_id=row.id,
        code=row.code,
        barangay_code=row.barangay_code,
        city_municipality_code=row.city_municipality_code,
        province_code=row.province_code,
        region_code=row.region_code,
        subdivision_id=row.subdivision_id,
        street_id=row.street_id,
        house_number=row.house_number,
        hierarchy_confidence=HierarchyConfidence(row.hierarchy_confidence),
        created_at=row.created_at,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", status_code=201, response_model=Household)
async def create_household(
    body: CreateHouseholdRequest,
    store: HierarchyStore = Depends(get_hierarchy_store),
    resolver: HierarchyResolver = Depends(get_hierarchy_resolver),
    generator: CodeGenerator = Depends(get_code_generator),
) -> Household:
    """Create a household under a barangay with a freshly generated code."""
    # Address parts must belong to the same barangay.
    subdivision_code: str | None = None
    street_code: str | None = None
    try:
        if body.subdivision_id is not None:
            subdivision = await store.execute(
                f"get subdivision {body.subdivision_id}",
                lambda r: r.get_subdivision(body.subdivision_id),
                repository=AddressPartRepository,
            )
            if subdivision is None or subdivision.barangay_code != body.barangay_code:
                raise HTTPException(
                    status_code=422,
                    detail=f"Subdivision {body.subdivision_id} not found "
                           f"in barangay {body.barangay_code}.",
                )
            subdivision_code = subdivision.code
        if body.street_id is not None:
            street = await store.execute(
                f"get street {body.street_id}",
                lambda r: r.get_street(body.street_id),
                repository=AddressPartRepository,
            )
            if street is None or street.barangay_code != body.barangay_code:
                raise HTTPException(
                    status_code=422,
                    detail=f"Street {body.street_id} not found "
                           f"in barangay {body.barangay_code}.",
                )
            street_code = street.code
    except StoreError as exc:
        raise HTTPException(
            status_code=503,
            detail={"error_code": "STORE_UNAVAILABLE", "message": str(exc)},
        ) from exc

    hierarchy = await resolver.resolve(body.barangay_code)

    try:
        row = await generator.create_household(
            barangay_code=body.barangay_code,
            hierarchy=hierarchy,
            subdivision_id=body.subdivision_id,
            subdivision_code=subdivision_code,
            street_id=body.street_id,
            street_code=street_code,
            house_number=body.house_number,
        )
    except CapacityExceededError as exc:
        logger.error("Household capacity exhausted: %s", exc)
        raise HTTPException(
            status_code=422,
            detail={
                "error_code": "CAPACITY_EXCEEDED",
                "message": str(exc),
                "barangay_code": exc.barangay_code,
            },
        ) from exc
    except UniquenessConflictError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "error_code": "UNIQUENESS_CONFLICT",
                "message": str(exc),
                "barangay_code": exc.barangay_code,
            },
        ) from exc

    return _to_household(row)


@router.get("/{code}", response_model=Household)
async def get_household(
    code: str,
    repo: HouseholdRepository = Depends(get_household_repo),
) -> Household:
    row = await repo.get_by_code(code)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Household {code} not found.")
    return _to_household(row)
