"""Tests for HierarchyResolver — strategy order, retry, budget, caching."""

import pytest

from src.geography.cache import ResultCache
from src.geography.errors import StoreError, TransientStoreError
from src.geography.resolver import (
    DerivedCodeStrategy,
    HierarchyLookupStrategy,
    HierarchyResolver,
    NestedJoinStrategy,
    ViewStrategy,
    build_resolver,
    leaf_level_of,
)
from src.geography.store import HierarchyStore
from src.models.common import GeoLevel, HierarchyConfidence
from src.models.geography import PartialHierarchy, ResolvedHierarchy


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class RecordingSleep:
    def __init__(self, clock=None) -> None:
        self.delays: list[float] = []
        self._clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self._clock is not None:
            self._clock.now += delay


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _resolved(code: str, strategy: str) -> ResolvedHierarchy:
    return ResolvedHierarchy(
        leaf_code=code,
        leaf_level=GeoLevel.BARANGAY,
        region_code=code[:2],
        province_code=code[:4],
        city_municipality_code=code[:6],
        barangay_code=code,
        strategy=strategy,
    )


class ScriptedStrategy(HierarchyLookupStrategy):
    """Plays back a fixed list of outcomes, one per attempt."""

    def __init__(self, name: str, outcomes: list, *, clock=None, cost: float = 0.0) -> None:
        self._name = name
        self._outcomes = list(outcomes)
        self.calls = 0
        self._clock = clock
        self._cost = cost

    @property
    def name(self) -> str:
        return self._name

    async def attempt(self, leaf_code, leaf_level):
        self.calls += 1
        if self._clock is not None:
            self._clock.now += self._cost
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == "found":
            return _resolved(leaf_code, self._name)
        return None


@pytest.fixture
def store(session_factory, psgc_seed) -> HierarchyStore:
    return HierarchyStore(session_factory)


# ---------------------------------------------------------------------------
# Leaf codes
# ---------------------------------------------------------------------------


class TestLeafLevel:
    def test_nine_digits_is_barangay(self) -> None:
        assert leaf_level_of("137404001") == GeoLevel.BARANGAY

    def test_six_digits_is_city(self) -> None:
        assert leaf_level_of("137404") == GeoLevel.CITY

    @pytest.mark.parametrize("code", ["", "13", "1374", "13740400", "13740400A", "1374040011"])
    def test_other_shapes_rejected(self, code: str) -> None:
        assert leaf_level_of(code) is None


# ---------------------------------------------------------------------------
# Real strategies against the sample data
# ---------------------------------------------------------------------------


class TestStandardStrategies:
    @pytest.mark.anyio
    async def test_view_resolves_independent_city_barangay(self, store: HierarchyStore) -> None:
        resolver = build_resolver(store, retry_delay_seconds=0)
        result = await resolver.resolve("137404001")

        assert isinstance(result, ResolvedHierarchy)
        assert result.strategy == "view"
        assert result.verified
        assert result.region_code == "13"
        assert result.region_name == "National Capital Region (NCR)"
        assert result.province_code is None
        assert result.city_municipality_code == "137404"
        assert result.is_independent is True
        assert result.barangay_name == "Alicia"
        assert result.full_address == "Alicia, Quezon City, National Capital Region (NCR)"

    @pytest.mark.anyio
    async def test_view_resolves_provincial_barangay(self, store: HierarchyStore) -> None:
        result = await build_resolver(store).resolve("042103002")
        assert result.province_code == "0421"
        assert result.province_name == "Cavite"
        assert result.region_code == "04"
        assert result.is_independent is False

    @pytest.mark.anyio
    async def test_city_leaf_uses_nested_join(self, store: HierarchyStore) -> None:
        result = await build_resolver(store).resolve("012812")
        assert isinstance(result, ResolvedHierarchy)
        assert result.strategy == "nested_join"
        assert result.leaf_level == GeoLevel.CITY
        assert result.barangay_code is None
        assert result.province_code == "0128"
        assert result.region_name == "Region I (Ilocos Region)"

    @pytest.mark.anyio
    async def test_nested_join_alone(self, store: HierarchyStore) -> None:
        resolver = HierarchyResolver([NestedJoinStrategy(store)])
        result = await resolver.resolve("137401002")
        assert result.verified
        assert result.province_code is None
        assert result.region_code == "13"
        assert result.barangay_name == "Bagong Silang"

    @pytest.mark.anyio
    async def test_unknown_code_falls_back_to_derived(self, store: HierarchyStore) -> None:
        result = await build_resolver(store).resolve("042103999")
        assert isinstance(result, ResolvedHierarchy)
        assert result.confidence == HierarchyConfidence.DERIVED
        assert not result.verified
        assert (result.region_code, result.province_code, result.city_municipality_code) == (
            "04", "0421", "042103",
        )
        assert result.region_name is None

    @pytest.mark.anyio
    async def test_derived_omits_province_for_independent_region(self) -> None:
        resolver = HierarchyResolver([DerivedCodeStrategy(independent_region_code="13")])
        result = await resolver.resolve("137404999")
        assert result.region_code == "13"
        assert result.province_code is None
        assert result.is_independent is True

    @pytest.mark.anyio
    async def test_view_and_join_not_found_without_derived(self, store: HierarchyStore) -> None:
        resolver = HierarchyResolver([ViewStrategy(store), NestedJoinStrategy(store)])
        result = await resolver.resolve("042103999")
        assert isinstance(result, PartialHierarchy)
        assert result.confidence == HierarchyConfidence.FAILED
        assert [a.outcome for a in result.attempts] == ["not_found", "not_found"]

    @pytest.mark.parametrize("leaf", ["137404001", "042103002", "012812001", "012812"])
    @pytest.mark.anyio
    async def test_segment_prefixes_match_leaf(self, store: HierarchyStore, leaf: str) -> None:
        result = await build_resolver(store).resolve(leaf)
        assert result.region_code == leaf[:2]
        assert result.city_municipality_code == leaf[:6]
        if result.is_independent:
            assert result.province_code is None
        else:
            assert result.province_code == leaf[:4]


# ---------------------------------------------------------------------------
# Resolver control flow
# ---------------------------------------------------------------------------


class TestFallbackAndRetry:
    @pytest.mark.anyio
    async def test_malformed_code_returns_partial(self) -> None:
        resolver = HierarchyResolver([DerivedCodeStrategy()])
        result = await resolver.resolve("13-74")
        assert isinstance(result, PartialHierarchy)
        assert result.leaf_code == "13-74"
        assert "6- or 9-digit" in result.reason

    @pytest.mark.anyio
    async def test_transient_failure_retried_once_after_delay(self) -> None:
        sleep = RecordingSleep()
        first = ScriptedStrategy("view", [TransientStoreError("timeout"), "found"])
        resolver = HierarchyResolver([first], retry_delay_seconds=0.3, sleep=sleep)

        result = await resolver.resolve("137404001")
        assert result.strategy == "view"
        assert first.calls == 2
        assert sleep.delays == [0.3]

    @pytest.mark.anyio
    async def test_persistent_transient_failure_falls_through(self) -> None:
        sleep = RecordingSleep()
        first = ScriptedStrategy("view", [TransientStoreError("a"), TransientStoreError("b")])
        second = ScriptedStrategy("nested_join", ["found"])
        resolver = HierarchyResolver([first, second], sleep=sleep)

        result = await resolver.resolve("137404001")
        assert result.strategy == "nested_join"
        assert first.calls == 2
        assert len(sleep.delays) == 1

    @pytest.mark.anyio
    async def test_non_transient_store_error_not_retried(self) -> None:
        first = ScriptedStrategy("view", [StoreError("no such view")])
        second = ScriptedStrategy("nested_join", ["found"])
        sleep = RecordingSleep()
        resolver = HierarchyResolver([first, second], sleep=sleep)

        result = await resolver.resolve("137404001")
        assert result.strategy == "nested_join"
        assert first.calls == 1
        assert sleep.delays == []

    def test_derived_strategy_never_retried(self) -> None:
        assert DerivedCodeStrategy.retryable is False

    @pytest.mark.anyio
    async def test_unexpected_exception_never_escapes(self) -> None:
        broken = ScriptedStrategy("view", [RuntimeError("bug")])
        resolver = HierarchyResolver([broken])
        result = await resolver.resolve("137404001")
        assert isinstance(result, PartialHierarchy)
        assert result.attempts[0].outcome == "error"
        assert "RuntimeError" in result.attempts[0].error

    @pytest.mark.anyio
    async def test_all_failures_recorded_in_reason(self) -> None:
        sleep = RecordingSleep()
        resolver = HierarchyResolver(
            [
                ScriptedStrategy("view", [TransientStoreError("t1"), TransientStoreError("t2")]),
                ScriptedStrategy("nested_join", [None]),
            ],
            sleep=sleep,
        )
        result = await resolver.resolve("137404001")
        assert isinstance(result, PartialHierarchy)
        assert [(a.strategy, a.attempt, a.outcome) for a in result.attempts] == [
            ("view", 1, "transient_error"),
            ("view", 2, "transient_error"),
            ("nested_join", 1, "not_found"),
        ]
        assert "view#1: transient_error (t1)" in result.reason

    @pytest.mark.anyio
    async def test_city_leaf_skips_view(self, store: HierarchyStore) -> None:
        resolver = HierarchyResolver([ViewStrategy(store)])
        result = await resolver.resolve("137404")
        assert isinstance(result, PartialHierarchy)
        assert result.attempts[0].outcome == "skipped"

    def test_requires_a_strategy(self) -> None:
        with pytest.raises(ValueError):
            HierarchyResolver([])

    def test_backoff_delays(self) -> None:
        resolver = HierarchyResolver(
            [DerivedCodeStrategy()], retry_delay_seconds=0.3, max_retries=2,
        )
        assert resolver.compute_backoff_delays() == [0.3, 0.6]


class TestBudget:
    @pytest.mark.anyio
    async def test_strategies_skipped_once_budget_spent(self) -> None:
        clock = FakeClock()
        slow = ScriptedStrategy("view", [TransientStoreError("slow")], clock=clock, cost=5.0)
        never = ScriptedStrategy("nested_join", ["found"])
        resolver = HierarchyResolver(
            [slow, never], budget_seconds=4.0, clock=clock, sleep=RecordingSleep(clock),
        )

        result = await resolver.resolve("137404001")
        assert isinstance(result, PartialHierarchy)
        assert slow.calls == 1
        assert never.calls == 0
        assert result.attempts[-1].outcome == "skipped"

    @pytest.mark.anyio
    async def test_retry_not_slept_past_deadline(self) -> None:
        clock = FakeClock()
        sleep = RecordingSleep(clock)
        flaky = ScriptedStrategy(
            "view", [TransientStoreError("t"), "found"], clock=clock, cost=3.9,
        )
        resolver = HierarchyResolver(
            [flaky, DerivedCodeStrategy()],
            budget_seconds=4.0, retry_delay_seconds=0.3, clock=clock, sleep=sleep,
        )
        result = await resolver.resolve("042103001")
        assert sleep.delays == []
        assert flaky.calls == 1
        assert result.confidence == HierarchyConfidence.DERIVED

    @pytest.mark.anyio
    async def test_derived_runs_after_store_strategies_spend_budget(self) -> None:
        clock = FakeClock()
        view = ScriptedStrategy(
            "view", [TransientStoreError("timed out")] * 2, clock=clock, cost=2.0,
        )
        join = ScriptedStrategy("nested_join", ["found"], clock=clock, cost=2.0)
        resolver = HierarchyResolver(
            [view, join, DerivedCodeStrategy()],
            budget_seconds=4.0, retry_delay_seconds=0.3, clock=clock,
            sleep=RecordingSleep(clock),
        )

        result = await resolver.resolve("137404001")
        assert isinstance(result, ResolvedHierarchy)
        assert result.confidence == HierarchyConfidence.DERIVED
        assert result.strategy == "derived_code"
        assert view.calls == 2
        assert join.calls == 0

    def test_only_store_strategies_are_bounded(self) -> None:
        assert DerivedCodeStrategy.bounded is False
        assert ViewStrategy.bounded is True
        assert NestedJoinStrategy.bounded is True


class TestCaching:
    @pytest.mark.anyio
    async def test_verified_result_cached(self) -> None:
        cache = ResultCache()
        strategy = ScriptedStrategy("view", ["found", "found"])
        resolver = HierarchyResolver([strategy], cache=cache)

        first = await resolver.resolve("137404001")
        second = await resolver.resolve("137404001")
        assert second is first
        assert strategy.calls == 1

    @pytest.mark.anyio
    async def test_derived_result_not_cached(self) -> None:
        cache = ResultCache()
        resolver = HierarchyResolver([DerivedCodeStrategy()], cache=cache)
        await resolver.resolve("042103001")
        assert len(cache) == 0
