"""HierarchyResolver — reconstruct the ancestor chain of a single leaf code.

Strategies are tried in order until one succeeds:
1. ViewStrategy — one read of the pre-joined psgc_address_hierarchy view.
2. NestedJoinStrategy — explicit barangay → city → province → region join.
3. DerivedCodeStrategy — slice the fixed-width code (2/4/6 digits) with no
   store confirmation; the chain is flagged DERIVED.

Store-backed strategies get one retry after a short delay when the failure
is transient (timeout / connection). The whole resolution runs inside an
overall time budget; a strategy attempt that would start after the budget
is spent is skipped. The derived strategy reads no store and always runs,
so a hung store still ends in a DERIVED chain.

resolve() never raises: if every strategy fails it returns a
PartialHierarchy carrying the leaf code, the reason and the attempt log.
Only VERIFIED chains are cached.
"""

import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence

from src.geography.cache import CacheKey, ResultCache
from src.geography.errors import StoreError, TransientStoreError
from src.geography.store import DEFAULT_INDEPENDENT_REGION, HierarchyStore
from src.models.common import GeoLevel, HierarchyConfidence
from src.models.geography import PartialHierarchy, ResolvedHierarchy, StrategyAttempt

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY_S = 0.3
DEFAULT_BUDGET_S = 4.0
DEFAULT_MAX_RETRIES = 1

_BARANGAY_RE = re.compile(r"^\d{9}$")
_CITY_RE = re.compile(r"^\d{6}$")


def leaf_level_of(code: str) -> GeoLevel | None:
    """BARANGAY for 9-digit codes, CITY for 6-digit codes, else None."""
    if _BARANGAY_RE.match(code):
        return GeoLevel.BARANGAY
    if _CITY_RE.match(code):
        return GeoLevel.CITY
    return None


# ---------------------------------------------------------------------------
# Strategy interface
# ---------------------------------------------------------------------------


class HierarchyLookupStrategy(ABC):
    """One way of turning a leaf code into a ResolvedHierarchy."""

    #: Whether transient failures may be retried.
    retryable: bool = True
    #: Whether attempts touch the store and so count against the budget.
    bounded: bool = True

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy name for the attempt log."""
        ...

    def supports(self, leaf_level: GeoLevel) -> bool:
        return True

    @abstractmethod
    async def attempt(self, leaf_code: str, leaf_level: GeoLevel) -> ResolvedHierarchy | None:
        """Resolve leaf_code. Returns None when the code is not found.

        Raises:
            TransientStoreError: retryable failure.
            StoreError: non-retryable store failure.
        """
        ...


class ViewStrategy(HierarchyLookupStrategy):
    """Single query against the pre-joined hierarchy view (barangays only)."""

    def __init__(self, store: HierarchyStore) -> None:
        self._store = store

    @property
    def name(self) -> str:
        return "view"

    def supports(self, leaf_level: GeoLevel) -> bool:
        return leaf_level == GeoLevel.BARANGAY

    async def attempt(self, leaf_code: str, leaf_level: GeoLevel) -> ResolvedHierarchy | None:
        row = await self._store.execute(
            f"hierarchy view lookup for {leaf_code}",
            lambda r: r.get_hierarchy_from_view(leaf_code),
        )
        if row is None:
            return None
        return ResolvedHierarchy(
            leaf_code=leaf_code,
            leaf_level=GeoLevel.BARANGAY,
            region_code=row["region_code"],
            region_name=row["region_name"],
            province_code=row["province_code"],
            province_name=row["province_name"],
            city_municipality_code=row["city_municipality_code"],
            city_municipality_name=row["city_municipality_name"],
            city_municipality_type=row["city_municipality_type"],
            is_independent=bool(row["is_independent"]),
            barangay_code=row["barangay_code"],
            barangay_name=row["barangay_name"],
            confidence=HierarchyConfidence.VERIFIED,
            strategy=self.name,
        )


class NestedJoinStrategy(HierarchyLookupStrategy):
    """Explicit join across the four reference tables."""

    def __init__(self, store: HierarchyStore) -> None:
        self._store = store

    @property
    def name(self) -> str:
        return "nested_join"

    async def attempt(self, leaf_code: str, leaf_level: GeoLevel) -> ResolvedHierarchy | None:
        if leaf_level == GeoLevel.BARANGAY:
            chain = await self._store.execute(
                f"nested join lookup for barangay {leaf_code}",
                lambda r: r.get_barangay_chain(leaf_code),
            )
            if chain is None:
                return None
            barangay, city, province, region = chain
        else:
            chain = await self._store.execute(
                f"nested join lookup for city {leaf_code}",
                lambda r: r.get_city_chain(leaf_code),
            )
            if chain is None:
                return None
            city, province, region = chain
            barangay = None

        return ResolvedHierarchy(
            leaf_code=leaf_code,
            leaf_level=leaf_level,
            region_code=region.code,
            region_name=region.name,
            province_code=province.code if province is not None else None,
            province_name=province.name if province is not None else None,
            city_municipality_code=city.code,
            city_municipality_name=city.name,
            city_municipality_type=city.type,
            is_independent=city.is_independent,
            barangay_code=barangay.code if barangay is not None else None,
            barangay_name=barangay.name if barangay is not None else None,
            confidence=HierarchyConfidence.VERIFIED,
            strategy=self.name,
        )


class DerivedCodeStrategy(HierarchyLookupStrategy):
    """Slice the fixed-width leaf code into ancestor codes.

    Unverified: names are unknown and the chain is flagged DERIVED. The
    province segment is omitted under the independent-city region.
    """

    retryable = False
    bounded = False

    def __init__(self, *, independent_region_code: str = DEFAULT_INDEPENDENT_REGION) -> None:
        self._independent_region_code = independent_region_code

    @property
    def name(self) -> str:
        return "derived_code"

    async def attempt(self, leaf_code: str, leaf_level: GeoLevel) -> ResolvedHierarchy | None:
        region_code = leaf_code[:2]
        independent = region_code == self._independent_region_code
        return ResolvedHierarchy(
            leaf_code=leaf_code,
            leaf_level=leaf_level,
            region_code=region_code,
            province_code=None if independent else leaf_code[:4],
            city_municipality_code=leaf_code[:6],
            is_independent=independent,
            barangay_code=leaf_code if leaf_level == GeoLevel.BARANGAY else None,
            confidence=HierarchyConfidence.DERIVED,
            strategy=self.name,
        )


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class HierarchyResolver:
    """Ordered strategy fallback with retry/backoff inside a time budget."""

    def __init__(
        self,
        strategies: Sequence[HierarchyLookupStrategy],
        *,
        cache: ResultCache | None = None,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_S,
        max_retries: int = DEFAULT_MAX_RETRIES,
        budget_seconds: float = DEFAULT_BUDGET_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not strategies:
            raise ValueError("At least one strategy is required")
        self._strategies = list(strategies)
        self._cache = cache
        self.retry_delay_seconds = retry_delay_seconds
        self.max_retries = max_retries
        self.budget_seconds = budget_seconds
        self._sleep = sleep
        self._clock = clock

    def compute_backoff_delays(self) -> list[float]:
        """Exponential backoff delays for retries of one strategy."""
        return [self.retry_delay_seconds * (2**i) for i in range(self.max_retries)]

    async def resolve(self, leaf_code: str) -> ResolvedHierarchy | PartialHierarchy:
        code = (leaf_code or "").strip()
        leaf_level = leaf_level_of(code)
        if leaf_level is None:
            logger.warning("Cannot resolve malformed leaf code %r", leaf_code)
            return PartialHierarchy(
                leaf_code=code, reason="Leaf code must be a 6- or 9-digit PSGC code",
            )

        key = CacheKey("resolve", leaf_level.value, code)
        if self._cache is not None:
            hit, cached = self._cache.get(key)
            if hit:
                return cached

        attempts: list[StrategyAttempt] = []
        deadline = self._clock() + self.budget_seconds

        for strategy in self._strategies:
            if not strategy.supports(leaf_level):
                attempts.append(StrategyAttempt(
                    strategy=strategy.name, attempt=0, outcome="skipped",
                    error=f"does not handle {leaf_level.value} codes",
                ))
                continue

            result = await self._run_strategy(strategy, code, leaf_level, deadline, attempts)
            if result is not None:
                if self._cache is not None and result.verified:
                    self._cache.put(key, result)
                return result

        reason = "; ".join(
            f"{a.strategy}#{a.attempt}: {a.outcome}" + (f" ({a.error})" if a.error else "")
            for a in attempts
        )
        logger.error("All hierarchy strategies failed for %s: %s", code, reason)
        return PartialHierarchy(leaf_code=code, reason=reason, attempts=attempts)

    async def _run_strategy(
        self,
        strategy: HierarchyLookupStrategy,
        code: str,
        leaf_level: GeoLevel,
        deadline: float,
        attempts: list[StrategyAttempt],
    ) -> ResolvedHierarchy | None:
        delays = self.compute_backoff_delays() if strategy.retryable else []
        for attempt_no in range(1, len(delays) + 2):
            remaining = deadline - self._clock() if strategy.bounded else None
            if remaining is not None and remaining <= 0:
                attempts.append(StrategyAttempt(
                    strategy=strategy.name, attempt=attempt_no, outcome="skipped",
                    error="resolution budget exhausted",
                ))
                logger.warning(
                    "Strategy %s skipped for %s: budget exhausted", strategy.name, code,
                )
                return None

            try:
                result = await asyncio.wait_for(
                    strategy.attempt(code, leaf_level), timeout=remaining,
                )
            except (TransientStoreError, TimeoutError) as exc:
                attempts.append(StrategyAttempt(
                    strategy=strategy.name, attempt=attempt_no,
                    outcome="transient_error", error=str(exc) or type(exc).__name__,
                ))
                logger.warning(
                    "Strategy %s attempt %d for %s failed transiently: %s",
                    strategy.name, attempt_no, code, exc,
                )
                if attempt_no <= len(delays):
                    delay = delays[attempt_no - 1]
                    if self._clock() + delay < deadline:
                        await self._sleep(delay)
                        continue
                return None
            except StoreError as exc:
                attempts.append(StrategyAttempt(
                    strategy=strategy.name, attempt=attempt_no,
                    outcome="error", error=str(exc),
                ))
                logger.warning(
                    "Strategy %s attempt %d for %s failed: %s",
                    strategy.name, attempt_no, code, exc,
                )
                return None
            except Exception as exc:
                # Auto-fill must never abort the caller's workflow.
                attempts.append(StrategyAttempt(
                    strategy=strategy.name, attempt=attempt_no,
                    outcome="error", error=f"{type(exc).__name__}: {exc}",
                ))
                logger.exception(
                    "Strategy %s attempt %d for %s raised unexpectedly",
                    strategy.name, attempt_no, code,
                )
                return None

            if result is None:
                attempts.append(StrategyAttempt(
                    strategy=strategy.name, attempt=attempt_no, outcome="not_found",
                ))
                logger.info("Strategy %s found no hierarchy for %s", strategy.name, code)
                return None

            attempts.append(StrategyAttempt(
                strategy=strategy.name, attempt=attempt_no, outcome="success",
            ))
            logger.info(
                "Resolved %s via %s (confidence=%s)",
                code, strategy.name, result.confidence.value,
            )
            return result
        return None


def build_resolver(
    store: HierarchyStore,
    *,
    cache: ResultCache | None = None,
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_S,
    budget_seconds: float = DEFAULT_BUDGET_S,
) -> HierarchyResolver:
    """Resolver with the standard view → nested join → derived order."""
    return HierarchyResolver(
        [
            ViewStrategy(store),
            NestedJoinStrategy(store),
            DerivedCodeStrategy(independent_region_code=store.independent_region_code),
        ],
        cache=cache,
        retry_delay_seconds=retry_delay_seconds,
        budget_seconds=budget_seconds,
    )
