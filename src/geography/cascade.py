"""CascadeController — state machine for the four dependent selection fields.

Levels, in order: REGION (L0), PROVINCE (L1), CITY (L2), BARANGAY (L3).
Each level is UNSET, LOADING, READY(options) or SELECTED(code).

Rules:
- Selecting at level k resets every level below k to UNSET together, then
  loads level k+1 with the new code as parent.
- Under the independent-city region the PROVINCE level is skipped (stays
  UNSET with skipped=True) and CITY is loaded via independent_cities_of.
- A child level is only loaded after its parent is SELECTED.
- Re-selecting the current value is a no-op: no reset, no load.
- A load failure leaves the level READY with no options and an error;
  a level is never left LOADING. A value selected while its own options
  were loading stays SELECTED when they arrive.
- Every load carries a per-level token. A response whose token is no
  longer current (the level was reset or reloaded since) is discarded.
- close() cancels in-flight loads; nothing mutates the state afterwards.

Edit mode: a form opened with only a leaf code calls auto_fill(), which
resolves the ancestors first and then walks the normal cascade with real
completion signals (select → load → select ...).
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum

from src.geography.errors import GeographyError
from src.geography.resolver import HierarchyResolver
from src.geography.store import HierarchyStore
from src.models.common import LEVELS, GeoLevel, HierarchyConfidence
from src.models.geography import Option, PartialHierarchy

logger = logging.getLogger(__name__)


class LevelStatus(StrEnum):
    UNSET = "UNSET"
    LOADING = "LOADING"
    READY = "READY"
    SELECTED = "SELECTED"


class AutoFillStatus(StrEnum):
    IDLE = "IDLE"
    LOADING = "LOADING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class CascadeClosedError(GeographyError):
    """The form session was torn down."""


@dataclass
class LevelState:
    status: LevelStatus = LevelStatus.UNSET
    options: tuple[Option, ...] = ()
    selected: str | None = None
    error: str | None = None
    skipped: bool = False


@dataclass
class CascadeSelectionState:
    """Per-form-session state. Owned by exactly one CascadeController."""

    levels: dict[GeoLevel, LevelState] = field(
        default_factory=lambda: {lv: LevelState() for lv in LEVELS}
    )
    auto_fill: AutoFillStatus = AutoFillStatus.IDLE
    auto_fill_error: str | None = None
    hierarchy_confidence: HierarchyConfidence | None = None

    def __getitem__(self, level: GeoLevel) -> LevelState:
        return self.levels[level]

    def selected_codes(self) -> dict[GeoLevel, str | None]:
        return {lv: st.selected for lv, st in self.levels.items()}

    @property
    def is_complete(self) -> bool:
        """True once a barangay is selected under a consistent chain."""
        return self.levels[GeoLevel.BARANGAY].status == LevelStatus.SELECTED


class CascadeController:
    """Drives one form session's cascading geographic selection."""

    def __init__(
        self,
        store: HierarchyStore,
        *,
        resolver: HierarchyResolver | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self.state = CascadeSelectionState()
        self._tokens: dict[GeoLevel, int] = {lv: 0 for lv in LEVELS}
        self._inflight: dict[GeoLevel, asyncio.Task] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def token(self, level: GeoLevel) -> int:
        """Current request token for level (increases on every reset/load)."""
        return self._tokens[level]

    def _check_open(self) -> None:
        if self._closed:
            raise CascadeClosedError("Form session is closed")

    # ----- Loading -----

    async def open(self) -> None:
        """Load the region options (L0)."""
        self._check_open()
        await self._load(GeoLevel.REGION, lambda: self._store.children_of(GeoLevel.REGION))

    async def _load(
        self,
        level: GeoLevel,
        loader: Callable[[], Awaitable[list[Option]]],
        *,
        parent_code: str | None = None,
    ) -> None:
        self._tokens[level] += 1
        token = self._tokens[level]
        st = self.state[level]
        st.status = LevelStatus.LOADING
        st.options = ()
        st.error = None

        task = asyncio.ensure_future(loader())
        self._inflight[level] = task
        try:
            options = await task
        except asyncio.CancelledError:
            # Cancelled by reset()/close() rather than by our own caller.
            current = asyncio.current_task()
            if task.cancelled() and not (current and current.cancelling()):
                return
            raise
        except Exception as exc:
            if self._is_stale(level, token):
                logger.debug("Discarding stale %s load failure", level.value)
                return
            logger.warning(
                "Loading %s options failed (parent=%s): %s",
                level.value, parent_code, exc,
            )
            if st.status != LevelStatus.SELECTED:
                st.status = LevelStatus.READY
            st.options = ()
            st.error = str(exc) or type(exc).__name__
            return
        finally:
            if self._inflight.get(level) is task:
                del self._inflight[level]

        if self._is_stale(level, token):
            logger.debug(
                "Discarding stale %s options (token %d, current %d)",
                level.value, token, self._tokens[level],
            )
            return
        # A value committed while the options were in flight stays selected.
        if st.status != LevelStatus.SELECTED:
            st.status = LevelStatus.READY
        st.options = tuple(options)

    def _is_stale(self, level: GeoLevel, token: int) -> bool:
        return self._closed or token != self._tokens[level]

    def _reset_below(self, level: GeoLevel) -> None:
        """Reset every level deeper than level to UNSET, invalidating loads."""
        for lv in LEVELS[level.depth + 1:]:
            self._tokens[lv] += 1
            self.state.levels[lv] = LevelState()

    # ----- Selection -----

    def _parent_committed(self, level: GeoLevel) -> bool:
        levels = self.state.levels
        if level == GeoLevel.REGION:
            return True
        if level == GeoLevel.PROVINCE:
            return (
                levels[GeoLevel.REGION].status == LevelStatus.SELECTED
                and not levels[GeoLevel.PROVINCE].skipped
            )
        if level == GeoLevel.CITY:
            if levels[GeoLevel.PROVINCE].skipped:
                return levels[GeoLevel.REGION].status == LevelStatus.SELECTED
            return levels[GeoLevel.PROVINCE].status == LevelStatus.SELECTED
        return levels[GeoLevel.CITY].status == LevelStatus.SELECTED

    def _loader_for_children(self, level: GeoLevel, code: str):
        """(target level, loader) for the level under a newly selected code."""
        if level == GeoLevel.REGION and self._store.is_independent_region(code):
            return GeoLevel.CITY, lambda: self._store.independent_cities_of(code)
        child = LEVELS[level.depth + 1]
        return child, lambda: self._store.children_of(child, code)

    async def select(self, level: GeoLevel, code: str | None) -> None:
        """Commit a selection at level and load the next level.

        Selecting None/"" clears level and everything below it.

        Raises:
            ValueError: if the parent level is not committed.
            CascadeClosedError: if the session was closed.
        """
        self._check_open()
        level = GeoLevel(level)
        st = self.state[level]

        if not code:
            await self.clear(level)
            return
        if st.status == LevelStatus.SELECTED and st.selected == code:
            return
        if not self._parent_committed(level):
            raise ValueError(
                f"Cannot select {level.value} before its parent level is selected"
            )

        st.status = LevelStatus.SELECTED
        st.selected = code
        st.error = None
        self._reset_below(level)
        if level == GeoLevel.BARANGAY:
            return

        target, loader = self._loader_for_children(level, code)
        if target == GeoLevel.CITY and level == GeoLevel.REGION:
            self.state[GeoLevel.PROVINCE].skipped = True
        await self._load(target, loader, parent_code=code)

    async def clear(self, level: GeoLevel) -> None:
        """Drop the selection at level and reset everything below it."""
        self._check_open()
        level = GeoLevel(level)
        st = self.state[level]
        self._reset_below(level)
        if st.status == LevelStatus.SELECTED:
            st.selected = None
            st.status = LevelStatus.READY if st.options else LevelStatus.UNSET

    async def retry(self, level: GeoLevel) -> None:
        """Re-issue the load for level after a failure (manual retry)."""
        self._check_open()
        level = GeoLevel(level)
        if level == GeoLevel.REGION:
            await self.open()
            return
        if self.state[level].skipped or not self._parent_committed(level):
            raise ValueError(f"Cannot load {level.value} before its parent is selected")
        parent = (
            GeoLevel.REGION
            if level == GeoLevel.CITY and self.state[GeoLevel.PROVINCE].skipped
            else LEVELS[level.depth - 1]
        )
        parent_code = self.state[parent].selected
        self._reset_below(parent)
        if parent == GeoLevel.REGION and level == GeoLevel.CITY:
            self.state[GeoLevel.PROVINCE].skipped = True
        _, loader = self._loader_for_children(parent, parent_code)
        await self._load(level, loader, parent_code=parent_code)

    # ----- Edit mode -----

    async def initialize(
        self,
        *,
        region: str | None = None,
        province: str | None = None,
        city: str | None = None,
        barangay: str | None = None,
    ) -> None:
        """Open the form with pre-existing selections.

        A leaf with missing intermediates is backfilled through auto_fill
        instead of cascading forward from empty levels.
        """
        self._check_open()
        leaf = barangay or city
        independent = self._store.is_independent_region(region)
        chain_complete = bool(region) and (bool(province) or independent) and bool(city)
        if leaf and not chain_complete:
            await self.auto_fill(leaf)
            return

        await self.open()
        for level, code in (
            (GeoLevel.REGION, region),
            (GeoLevel.PROVINCE, None if independent else province),
            (GeoLevel.CITY, city),
            (GeoLevel.BARANGAY, barangay),
        ):
            if not code:
                break
            await self.select(level, code)

    async def auto_fill(self, leaf_code: str) -> None:
        """Resolve leaf_code's ancestors and walk the cascade to it.

        Never raises on resolution failure: the status becomes FAILED and
        the form stays in manual-entry mode with regions loaded.
        """
        self._check_open()
        if self._resolver is None:
            raise ValueError("auto_fill requires a HierarchyResolver")

        self.state.auto_fill = AutoFillStatus.LOADING
        self.state.auto_fill_error = None
        self.state.hierarchy_confidence = None

        hierarchy = await self._resolver.resolve(leaf_code)
        if self._closed:
            return

        if isinstance(hierarchy, PartialHierarchy):
            self._fail_auto_fill(leaf_code, hierarchy.reason, hierarchy.confidence)
            await self.open()
            return

        await self.open()
        try:
            for level in LEVELS:
                code = hierarchy.code_for(level)
                if level == GeoLevel.PROVINCE and self.state[GeoLevel.PROVINCE].skipped:
                    continue
                if not code:
                    break
                await self.select(level, code)
                if self._closed:
                    return
        except ValueError as exc:
            # The form was reset while the chain was being walked.
            self._fail_auto_fill(leaf_code, str(exc), hierarchy.confidence)
            return

        leaf = self.state[hierarchy.leaf_level]
        if leaf.status != LevelStatus.SELECTED or leaf.selected != hierarchy.leaf_code:
            missing = next(
                (
                    lv.value for lv in LEVELS
                    if self.state[lv].status != LevelStatus.SELECTED and not self.state[lv].skipped
                ),
                hierarchy.leaf_level.value,
            )
            self._fail_auto_fill(
                leaf_code, f"Resolved chain has no {missing} code", hierarchy.confidence,
            )
            return

        self.state.hierarchy_confidence = hierarchy.confidence
        self.state.auto_fill = AutoFillStatus.SUCCESS
        logger.info(
            "Auto-filled %s via %s (confidence=%s)",
            leaf_code, hierarchy.strategy, hierarchy.confidence.value,
        )

    def _fail_auto_fill(
        self, leaf_code: str, reason: str, confidence: HierarchyConfidence,
    ) -> None:
        self.state.auto_fill = AutoFillStatus.FAILED
        self.state.auto_fill_error = reason
        self.state.hierarchy_confidence = confidence
        logger.warning("Auto-fill failed for %s: %s", leaf_code, reason)

    # ----- Teardown -----

    async def reset(self) -> None:
        """Discard every selection and option; the session stays open."""
        self._check_open()
        await self._cancel_inflight()
        for lv in LEVELS:
            self._tokens[lv] += 1
        self.state = CascadeSelectionState()

    async def close(self) -> None:
        """Tear down the session: cancel in-flight loads; no further
        mutation of the state is possible."""
        if self._closed:
            return
        self._closed = True
        await self._cancel_inflight()

    async def _cancel_inflight(self) -> None:
        tasks = list(self._inflight.values())
        self._inflight.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
