"""Unit tests for core/progression.py -- experience-to-level curve math.

Covers:
- level_for() picks the largest threshold <= experience
- Awards applied in either order land on the same level
- Curve validation rejects non-zero starts and non-increasing sequences
- threshold_for() / experience_to_next() bounds
"""

import itertools

import pytest

from core.progression import experience_to_next, level_for, threshold_for, validate_thresholds

PUBLISHING = (0, 100, 500)


class TestLevelFor:
    """Level is a table lookup over the accumulated total."""

    @pytest.mark.parametrize(
        "experience,expected",
        [(0, 0), (99, 0), (100, 1), (150, 1), (499, 1), (500, 2), (550, 2), (10_000, 2)],
    )
    def test_publishing_curve(self, experience: int, expected: int) -> None:
        assert level_for(PUBLISHING, experience) == expected

    def test_award_sequence_from_example(self) -> None:
        """150 xp -> level 1; +400 (550 total) -> level 2; +0 changes nothing."""
        total = 150
        assert level_for(PUBLISHING, total) == 1
        total += 400
        assert level_for(PUBLISHING, total) == 2
        total += 0
        assert level_for(PUBLISHING, total) == 2

    def test_order_of_awards_does_not_matter(self) -> None:
        awards = [30, 70, 250, 5, 145]
        levels = set()
        for order in itertools.permutations(awards):
            total = 0
            for amount in order:
                total += amount
            levels.add(level_for(PUBLISHING, total))
        assert levels == {2}

    def test_negative_experience_rejected(self) -> None:
        with pytest.raises(ValueError):
            level_for(PUBLISHING, -1)

    def test_single_level_curve(self) -> None:
        assert level_for((0,), 12345) == 0


class TestValidateThresholds:
    def test_returns_tuple(self) -> None:
        assert validate_thresholds([0, 10, 20]) == (0, 10, 20)

    @pytest.mark.parametrize("curve", [[], [5, 10], [0, 10, 10], [0, 20, 10]])
    def test_invalid_curves_rejected(self, curve: list[int]) -> None:
        with pytest.raises(ValueError):
            validate_thresholds(curve)


class TestThresholdHelpers:
    def test_threshold_for_each_level(self) -> None:
        assert [threshold_for(PUBLISHING, lvl) for lvl in range(3)] == [0, 100, 500]

    @pytest.mark.parametrize("level", [-1, 3])
    def test_threshold_for_out_of_range(self, level: int) -> None:
        with pytest.raises(ValueError):
            threshold_for(PUBLISHING, level)

    def test_experience_to_next(self) -> None:
        assert experience_to_next(PUBLISHING, 0) == 100
        assert experience_to_next(PUBLISHING, 150) == 350

    def test_experience_to_next_at_max_level(self) -> None:
        assert experience_to_next(PUBLISHING, 500) is None
