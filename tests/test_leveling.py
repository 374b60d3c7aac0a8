"""Tests for the experience to level curve."""
import pytest

from app.services.leveling import (
    experience_for_level,
    features_for_level,
    features_unlocked_between,
    get_level_progress,
    level_for_experience,
    next_feature_unlock,
    tickets_for_levels,
)


class TestLevelCurve:
    """Tests for level_for_experience and experience_for_level."""

    @pytest.mark.parametrize("experience,level", [
        (0, 1),
        (99, 1),
        (100, 2),
        (399, 2),
        (400, 3),
        (500, 3),
        (899, 3),
        (900, 4),
        (12100, 12),
    ])
    def test_known_levels(self, experience, level):
        """Level is floor(sqrt(exp / 100)) + 1."""
        assert level_for_experience(experience) == level

    def test_threshold_round_trip(self):
        """The level threshold maps back to its level, one below it does not."""
        for level in range(1, 300):
            threshold = experience_for_level(level)
            assert level_for_experience(threshold) == level
            assert level_for_experience(threshold - 1) == level - 1

    def test_monotonic(self):
        """More experience never means a lower level."""
        previous = level_for_experience(0)
        for experience in range(0, 50000, 37):
            level = level_for_experience(experience)
            assert level >= previous
            previous = level

    def test_large_totals_do_not_drift(self):
        """Integer square roots keep huge totals exact."""
        level = 100000
        assert level_for_experience(experience_for_level(level)) == level
        assert level_for_experience(experience_for_level(level) - 1) == level - 1


class TestLevelRewards:
    """Tests for tickets and feature unlocks tied to levels."""

    def test_two_tickets_per_level(self):
        assert tickets_for_levels(1) == 2
        assert tickets_for_levels(3) == 6
        assert tickets_for_levels(0) == 0
        assert tickets_for_levels(-2) == 0

    def test_crossing_one_threshold(self):
        assert features_unlocked_between(4, 5) == ["debate_mode"]

    def test_jump_unlocks_every_crossed_threshold(self):
        """Skipping levels still unlocks every feature in between, lowest first."""
        assert features_unlocked_between(3, 16) == ["debate_mode", "advanced_analytics", "custom_quizzes"]

    def test_no_unlock_without_crossing(self):
        assert features_unlocked_between(5, 5) == []
        assert features_unlocked_between(5, 9) == []

    def test_features_for_level(self):
        assert features_for_level(1) == []
        assert features_for_level(10) == ["debate_mode", "advanced_analytics"]

    def test_next_feature_unlock(self):
        assert next_feature_unlock(1) == {"level": 5, "feature": "debate_mode"}
        assert next_feature_unlock(30) is None


class TestLevelProgress:
    """Tests for get_level_progress."""

    def test_progress_within_level(self):
        progress = get_level_progress(500)

        assert progress["level"] == 3
        assert progress["current_level_experience"] == 400
        assert progress["next_level_experience"] == 900
        assert progress["experience_to_next_level"] == 400
        assert progress["progress_percentage"] == 20.0

    def test_progress_at_zero(self):
        progress = get_level_progress(0)

        assert progress["level"] == 1
        assert progress["experience_to_next_level"] == 100
        assert progress["progress_percentage"] == 0.0
