"""Tests for CodeGenerator — composition, sequencing, collisions, capacity."""

import pytest

from src.geography.errors import CapacityExceededError, UniquenessConflictError
from src.geography.households import CodeGenerator
from src.models.common import GeoLevel, HierarchyConfidence, new_uuid7
from src.models.geography import PartialHierarchy, ResolvedHierarchy
from src.models.household import HouseholdCode
from src.repositories.households import HouseholdRepository

BARANGAY = "137404001"


async def _insert(session, code: str, barangay: str = BARANGAY) -> None:
    await HouseholdRepository(session).create(
        household_id=new_uuid7(),
        code=code,
        barangay_code=barangay,
        city_municipality_code=barangay[:6],
        province_code=None,
        region_code=barangay[:2],
    )


@pytest.fixture
async def session(session_factory, psgc_seed):
    async with session_factory() as s:
        yield s
        await s.rollback()


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


class TestCompose:
    def test_defaults(self) -> None:
        code = CodeGenerator.compose(BARANGAY, 5)
        assert str(code) == "137404001-0000-0001-0005"

    def test_with_subdivision_and_street(self) -> None:
        code = CodeGenerator.compose(BARANGAY, 1, "0002", "0007")
        assert str(code) == "137404001-0002-0007-0001"

    def test_empty_segments_use_defaults(self) -> None:
        assert str(CodeGenerator.compose(BARANGAY, 12, "", "")) == "137404001-0000-0001-0012"

    def test_last_sequence_fits(self) -> None:
        assert str(CodeGenerator.compose(BARANGAY, 9999)).endswith("-9999")

    def test_sequence_over_capacity_is_rejected(self) -> None:
        with pytest.raises(CapacityExceededError) as excinfo:
            CodeGenerator.compose(BARANGAY, 10000)
        assert excinfo.value.sequence == 10000
        assert excinfo.value.barangay_code == BARANGAY

    @pytest.mark.parametrize("segment", ["1", "00001", "00a1"])
    def test_malformed_segment(self, segment: str) -> None:
        with pytest.raises(ValueError):
            CodeGenerator.compose(BARANGAY, 1, subdivision_code=segment)
        with pytest.raises(ValueError):
            CodeGenerator.compose(BARANGAY, 1, street_code=segment)

    def test_parse_reverses_str(self) -> None:
        parsed = HouseholdCode.parse("137404001-0002-0007-0042")
        assert parsed.barangay_code == BARANGAY
        assert parsed.subdivision == "0002"
        assert parsed.street == "0007"
        assert parsed.sequence == 42

    @pytest.mark.parametrize("bad", ["", "137404001-0000-0001", "13740400-0000-0001-0001"])
    def test_parse_rejects_malformed(self, bad: str) -> None:
        with pytest.raises(ValueError):
            HouseholdCode.parse(bad)

    def test_max_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            CodeGenerator(None, max_attempts=0)


# ---------------------------------------------------------------------------
# Generation against the database
# ---------------------------------------------------------------------------


class TestGenerate:
    @pytest.mark.anyio
    async def test_first_household_gets_sequence_one(self, session) -> None:
        code = await CodeGenerator(session).generate(BARANGAY)
        assert str(code) == "137404001-0000-0001-0001"

    @pytest.mark.anyio
    async def test_sequence_follows_count(self, session) -> None:
        for seq in range(1, 5):
            await _insert(session, f"137404001-0000-0001-{seq:04d}")
        code = await CodeGenerator(session).generate(BARANGAY)
        assert str(code) == "137404001-0000-0001-0005"

    @pytest.mark.anyio
    async def test_count_is_per_barangay(self, session) -> None:
        await _insert(session, "137404002-0000-0001-0001", barangay="137404002")
        code = await CodeGenerator(session).generate(BARANGAY, "0002", "0007")
        assert str(code) == "137404001-0002-0007-0001"

    @pytest.mark.anyio
    async def test_deterministic_without_insert(self, session) -> None:
        generator = CodeGenerator(session)
        assert await generator.generate(BARANGAY) == await generator.generate(BARANGAY)

    @pytest.mark.anyio
    async def test_create_increments(self, session) -> None:
        generator = CodeGenerator(session)
        first = await generator.create_household(barangay_code=BARANGAY)
        second = await generator.create_household(barangay_code=BARANGAY)
        assert first.code == "137404001-0000-0001-0001"
        assert second.code == "137404001-0000-0001-0002"

    @pytest.mark.anyio
    async def test_ancestors_stored_from_hierarchy(self, session) -> None:
        hierarchy = ResolvedHierarchy(
            leaf_code=BARANGAY,
            leaf_level=GeoLevel.BARANGAY,
            region_code="13",
            city_municipality_code="137404",
            is_independent=True,
            barangay_code=BARANGAY,
            strategy="view",
        )
        row = await CodeGenerator(session).create_household(
            barangay_code=BARANGAY, hierarchy=hierarchy, house_number="12-B",
        )
        assert row.region_code == "13"
        assert row.province_code is None
        assert row.city_municipality_code == "137404"
        assert row.house_number == "12-B"
        assert row.hierarchy_confidence == "VERIFIED"

    @pytest.mark.anyio
    async def test_partial_hierarchy_leaves_ancestors_empty(self, session) -> None:
        row = await CodeGenerator(session).create_household(
            barangay_code=BARANGAY,
            hierarchy=PartialHierarchy(leaf_code=BARANGAY, reason="store down"),
        )
        assert row.region_code is None
        assert row.city_municipality_code is None
        assert row.hierarchy_confidence == "FAILED"

    @pytest.mark.anyio
    async def test_derived_hierarchy_still_supplies_codes(self, session) -> None:
        hierarchy = ResolvedHierarchy(
            leaf_code="042103999",
            leaf_level=GeoLevel.BARANGAY,
            region_code="04",
            province_code="0421",
            city_municipality_code="042103",
            barangay_code="042103999",
            confidence=HierarchyConfidence.DERIVED,
            strategy="derived_code",
        )
        row = await CodeGenerator(session).create_household(
            barangay_code="042103999", hierarchy=hierarchy,
        )
        assert row.province_code == "0421"
        assert row.hierarchy_confidence == "DERIVED"


class TestCollisions:
    @pytest.mark.anyio
    async def test_collision_regenerates_past_highest(self, session) -> None:
        # One row exists, but it already holds sequence 0002: count+1 collides.
        await _insert(session, "137404001-0000-0001-0002")

        row = await CodeGenerator(session).create_household(barangay_code=BARANGAY)
        assert row.code == "137404001-0000-0001-0003"

        codes = await HouseholdRepository(session).list_codes(BARANGAY)
        assert sorted(codes) == [
            "137404001-0000-0001-0002",
            "137404001-0000-0001-0003",
        ]

    @pytest.mark.anyio
    async def test_persistent_collision_raises_after_max_attempts(
        self, session, monkeypatch,
    ) -> None:
        await _insert(session, "137404001-0000-0001-0002")
        generator = CodeGenerator(session, max_attempts=3)
        calls = 0

        async def same_code(*_args):
            nonlocal calls
            calls += 1
            return HouseholdCode.parse("137404001-0000-0001-0002")

        monkeypatch.setattr(generator, "_regenerate", same_code)

        with pytest.raises(UniquenessConflictError) as excinfo:
            await generator.create_household(barangay_code=BARANGAY)
        assert excinfo.value.attempts == 3
        assert excinfo.value.last_code == "137404001-0000-0001-0002"
        assert calls == 2
        assert await HouseholdRepository(session).count_by_barangay(BARANGAY) == 1

    @pytest.mark.anyio
    async def test_capacity_exceeded_is_not_retried(self, session, monkeypatch) -> None:
        generator = CodeGenerator(session)

        async def full(_barangay):
            return 9999

        monkeypatch.setattr(generator._repo, "count_by_barangay", full)
        with pytest.raises(CapacityExceededError):
            await generator.create_household(barangay_code=BARANGAY)
