"""FastAPI PSGC reference-data endpoints.

GET /v1/psgc/regions                             — all regions
GET /v1/psgc/provinces?region=                   — provinces of a region
GET /v1/psgc/cities?province=                    — cities/municipalities of a province
GET /v1/psgc/cities/independent?region=          — cities with no province
GET /v1/psgc/barangays?city=                     — barangays of a city
GET /v1/psgc/subdivisions?barangay_code=&search= — active subdivisions
GET /v1/psgc/streets?barangay_code=&...          — active streets
GET /v1/psgc/search?q=&limit=&offset=&levels=    — name search
GET /v1/psgc/search/config                       — client-side search tunables
GET /v1/psgc/hierarchy/{leaf_code}               — ancestor chain of a leaf

Unknown or missing parent codes return an empty list. A backing-store
failure returns 503 so callers can tell it apart from "no results".
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from src.api.dependencies import (
    get_hierarchy_resolver,
    get_hierarchy_store,
    get_search_index,
)
from src.config.settings import Settings, get_settings
from src.geography.errors import SearchUnavailableError, StoreError
from src.geography.resolver import HierarchyResolver
from src.geography.search import SearchIndex
from src.geography.store import HierarchyStore
from src.models.common import GeoLevel
from src.models.geography import Option, PartialHierarchy, ResolvedHierarchy, SearchPage

router = APIRouter(prefix="/v1/psgc", tags=["psgc"])


def _unavailable(exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={"error_code": "STORE_UNAVAILABLE", "message": str(exc)},
    )


# ---------------------------------------------------------------------------
# Cascade option lists
# ---------------------------------------------------------------------------


@router.get("/regions", response_model=list[Option])
async def list_regions(
    store: HierarchyStore = Depends(get_hierarchy_store),
) -> list[Option]:
    try:
        return await store.children_of(GeoLevel.REGION)
    except StoreError as exc:
        raise _unavailable(exc) from exc


@router.get("/provinces", response_model=list[Option])
async def list_provinces(
    region: str | None = Query(default=None),
    store: HierarchyStore = Depends(get_hierarchy_store),
) -> list[Option]:
    try:
        return await store.children_of(GeoLevel.PROVINCE, region)
    except StoreError as exc:
        raise _unavailable(exc) from exc


@router.get("/cities", response_model=list[Option])
async def list_cities(
    province: str | None = Query(default=None),
    store: HierarchyStore = Depends(get_hierarchy_store),
) -> list[Option]:
    try:
        return await store.children_of(GeoLevel.CITY, province)
    except StoreError as exc:
        raise _unavailable(exc) from exc


@router.get("/cities/independent", response_model=list[Option])
async def list_independent_cities(
    region: str | None = Query(default=None),
    store: HierarchyStore = Depends(get_hierarchy_store),
) -> list[Option]:
    """Cities that sit directly under a region (e.g. the cities of NCR)."""
    try:
        return await store.independent_cities_of(region)
    except StoreError as exc:
        raise _unavailable(exc) from exc


@router.get("/barangays", response_model=list[Option])
async def list_barangays(
    city: str | None = Query(default=None),
    store: HierarchyStore = Depends(get_hierarchy_store),
) -> list[Option]:
    try:
        return await store.children_of(GeoLevel.BARANGAY, city)
    except StoreError as exc:
        raise _unavailable(exc) from exc


# ---------------------------------------------------------------------------
# Barangay-local address parts
# ---------------------------------------------------------------------------


@router.get("/subdivisions", response_model=list[Option])
async def list_subdivisions(
    barangay_code: str | None = Query(default=None),
    search: str | None = Query(default=None),
    store: HierarchyStore = Depends(get_hierarchy_store),
) -> list[Option]:
    try:
        return await store.subdivisions_of(barangay_code, search=search)
    except StoreError as exc:
        raise _unavailable(exc) from exc


@router.get("/streets", response_model=list[Option])
async def list_streets(
    barangay_code: str | None = Query(default=None),
    subdivision_id: UUID | None = Query(default=None),
    search: str | None = Query(default=None),
    store: HierarchyStore = Depends(get_hierarchy_store),
) -> list[Option]:
    try:
        return await store.streets_of(
            barangay_code, subdivision_id=subdivision_id, search=search,
        )
    except StoreError as exc:
        raise _unavailable(exc) from exc


# ---------------------------------------------------------------------------
# Search / hierarchy
# ---------------------------------------------------------------------------


@router.get("/search", response_model=SearchPage)
async def search_psgc(
    q: str = Query(default=""),
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    levels: str | None = Query(
        default=None,
        description="Comma-separated subset of region,province,city,barangay.",
    ),
    index: SearchIndex = Depends(get_search_index),
    settings: Settings = Depends(get_settings),
) -> SearchPage:
    """One page of name matches; queries below the minimum length are empty."""
    wanted: list[GeoLevel] | None = None
    if levels:
        try:
            wanted = [GeoLevel(part.strip()) for part in levels.split(",") if part.strip()]
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    try:
        return await index.search_page(
            q,
            limit=limit or settings.SEARCH_DEFAULT_LIMIT,
            offset=offset,
            levels=wanted,
        )
    except SearchUnavailableError as exc:
        raise HTTPException(
            status_code=503,
            detail={"error_code": "SEARCH_UNAVAILABLE", "message": str(exc)},
        ) from exc


@router.get("/search/config")
async def search_config(settings: Settings = Depends(get_settings)) -> dict[str, int]:
    """Tunables a search-as-you-type client needs (quiet period, minimum length)."""
    return {
        "min_query_length": settings.SEARCH_MIN_QUERY_LENGTH,
        "debounce_ms": settings.SEARCH_DEBOUNCE_MS,
        "default_limit": settings.SEARCH_DEFAULT_LIMIT,
        "max_results": settings.SEARCH_MAX_RESULTS_CAP,
    }


@router.get(
    "/hierarchy/{leaf_code}",
    response_model=ResolvedHierarchy | PartialHierarchy,
)
async def resolve_hierarchy(
    leaf_code: str,
    resolver: HierarchyResolver = Depends(get_hierarchy_resolver),
) -> ResolvedHierarchy | PartialHierarchy:
    """Ancestor chain for a 6-digit city or 9-digit barangay code.

    Never fails: an unresolvable code yields a PartialHierarchy.
    """
    return await resolver.resolve(leaf_code)
