"""Unit tests for auth/ledger.py -- the Skill Ledger.

Covers:
- The publishing example: 150 xp -> level 1, +400 -> level 2, +0 -> unchanged
- Awards commute: either order yields the same total and level
- Missing records read as zero progress, not errors
- Negative awards and unknown skills are rejected
- set_level_directly() pins experience to the level threshold
- Concurrent awards from several threads never lose experience
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from auth.errors import UnknownSkill
from auth.ledger import SkillLedger
from auth.store import AuthStore
from core.catalog import Catalog


@pytest.fixture
def ledger(store: AuthStore, catalog: Catalog) -> SkillLedger:
    return SkillLedger(store, catalog)


class TestAwardExperience:
    def test_publishing_example(self, ledger: SkillLedger) -> None:
        progress = ledger.award_experience(1, "publishing", 150)
        assert (progress.level, progress.experience) == (1, 150)

        progress = ledger.award_experience(1, "publishing", 400)
        assert (progress.level, progress.experience) == (2, 550)

        progress = ledger.award_experience(1, "publishing", 0)
        assert (progress.level, progress.experience) == (2, 550)

    def test_zero_award_creates_nothing(self, ledger: SkillLedger, store: AuthStore) -> None:
        progress = ledger.award_experience(1, "publishing", 0)
        assert (progress.level, progress.experience) == (0, 0)
        assert store.get_progress(1, "publishing") is None

    @pytest.mark.parametrize("first,second", [(40, 70), (70, 40)])
    def test_awards_commute(self, ledger: SkillLedger, first: int, second: int) -> None:
        ledger.award_experience(7, "moderation", first)
        progress = ledger.award_experience(7, "moderation", second)
        assert (progress.level, progress.experience) == (1, 110)

    def test_repeated_award_is_cumulative(self, ledger: SkillLedger) -> None:
        ledger.award_experience(1, "publishing", 60)
        progress = ledger.award_experience(1, "publishing", 60)
        assert (progress.level, progress.experience) == (1, 120)

    def test_negative_amount_rejected(self, ledger: SkillLedger) -> None:
        with pytest.raises(ValueError):
            ledger.award_experience(1, "publishing", -5)

    def test_unknown_skill_rejected(self, ledger: SkillLedger) -> None:
        with pytest.raises(UnknownSkill):
            ledger.award_experience(1, "juggling", 10)

    def test_unknown_skill_is_key_error(self) -> None:
        assert issubclass(UnknownSkill, KeyError)

    def test_skills_are_independent(self, ledger: SkillLedger) -> None:
        ledger.award_experience(1, "publishing", 500)
        assert ledger.get_progress(1, "moderation").level == 0
        assert ledger.get_progress(2, "publishing").level == 0

    def test_experience_past_max_level(self, ledger: SkillLedger) -> None:
        progress = ledger.award_experience(1, "publishing", 99_999)
        assert progress.level == 2
        assert progress.experience == 99_999


class TestGetProgress:
    def test_absent_record_is_zero(self, ledger: SkillLedger) -> None:
        progress = ledger.get_progress(42, "publishing")
        assert (progress.user_id, progress.skill, progress.level, progress.experience) == (42, "publishing", 0, 0)

    def test_get_all_progress_zero_fills_in_catalog_order(self, ledger: SkillLedger, catalog: Catalog) -> None:
        ledger.award_experience(1, "moderation", 300)
        rows = ledger.get_all_progress(1)
        assert [r.skill for r in rows] == list(catalog.skills)
        by_skill = {r.skill: r for r in rows}
        assert by_skill["moderation"].level == 2
        assert by_skill["publishing"].level == 0


class TestSetLevelDirectly:
    def test_sets_level_and_threshold(self, ledger: SkillLedger) -> None:
        progress = ledger.set_level_directly(1, "moderation", 2)
        assert (progress.level, progress.experience) == (2, 250)

    def test_can_demote(self, ledger: SkillLedger) -> None:
        ledger.award_experience(1, "moderation", 1200)
        progress = ledger.set_level_directly(1, "moderation", 1)
        assert (progress.level, progress.experience) == (1, 50)

    def test_awards_continue_from_override(self, ledger: SkillLedger) -> None:
        ledger.set_level_directly(1, "publishing", 1)
        progress = ledger.award_experience(1, "publishing", 400)
        assert (progress.level, progress.experience) == (2, 500)

    @pytest.mark.parametrize("level", [-1, 3])
    def test_level_out_of_range(self, ledger: SkillLedger, level: int) -> None:
        with pytest.raises(ValueError):
            ledger.set_level_directly(1, "publishing", level)

    def test_unknown_skill(self, ledger: SkillLedger) -> None:
        with pytest.raises(UnknownSkill):
            ledger.set_level_directly(1, "juggling", 1)


class TestConcurrentAwards:
    def test_parallel_awards_sum_exactly(self, catalog: Catalog, tmp_path) -> None:
        """Twenty racing awards of 25 xp must total 500 (publishing level 2)."""
        store = AuthStore(f"sqlite:///{tmp_path / 'race.db'}")
        try:
            ledger = SkillLedger(store, catalog)
            with ThreadPoolExecutor(max_workers=4) as pool:
                list(pool.map(lambda _: ledger.award_experience(1, "publishing", 25), range(20)))
            progress = ledger.get_progress(1, "publishing")
            assert (progress.level, progress.experience) == (2, 500)
        finally:
            store.close()
