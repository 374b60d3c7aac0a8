"""Tests for the progression orchestrator."""
import logging
from datetime import timedelta

import pytest

from app.content.philosophers import PHILOSOPHERS
from app.services.catalog import build_catalog
from app.services.progression import InvalidUpdate, ProgressionOrchestrator, ProgressionUpdate, coerce_update
from app.services.records import ProgressionDelta
from app.services.store import RecordStore, StoreUnavailable
from tests.helpers import give


class ConflictingStore(RecordStore):
    """Lets another writer commit first on the next ``conflicts`` writes."""

    def __init__(self, session_factory, conflicts=1):
        super().__init__(session_factory)
        self.conflicts = conflicts
        self.writes = 0

    def atomic_write(self, user_id, delta):
        self.writes += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            current = self.read(user_id)
            super().atomic_write(user_id, ProgressionDelta(
                expected_version=current.version,
                user_fields={"gacha_tickets": current.gacha_tickets + 10},
            ))
        return super().atomic_write(user_id, delta)


class FailingStore(RecordStore):
    """Store whose writes always fail."""

    def atomic_write(self, user_id, delta):
        raise StoreUnavailable("database is locked")


class TestApplyUpdate:
    """Tests for ProgressionOrchestrator.apply_update."""

    def test_level_up_grants_tickets(self, orchestrator, store):
        """500 experience from level 1 reaches level 3 with 4 tickets."""
        result = orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=500))

        assert result.new_level == 3
        assert result.leveled_up is True
        assert result.levels_gained == 2
        assert result.gacha_tickets == 4

        record = store.read("u1")
        assert record.level == 3
        assert record.experience == 500
        assert record.gacha_tickets == 4
        assert record.version == 1

    def test_no_level_up(self, orchestrator):
        result = orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=50))

        assert result.new_level == 1
        assert result.leveled_up is False
        assert result.gacha_tickets == 0

    def test_big_jump_unlocks_features_and_level_achievement(self, orchestrator, store):
        result = orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=12100))

        assert result.new_level == 12
        assert result.features_unlocked == ["debate_mode", "advanced_analytics"]
        assert "rising_thinker" in result.achievements_unlocked
        # 11 levels * 2 tickets + 5 from rising_thinker
        assert result.gacha_tickets == 27

        record = store.read("u1")
        assert record.unlocked_features == frozenset({"debate_mode", "advanced_analytics"})
        assert record.achievements["rising_thinker"].completed is True

    def test_features_unlock_once(self, orchestrator, store):
        orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=1600))
        result = orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=100))

        assert store.read("u1").unlocked_features == frozenset({"debate_mode"})
        assert result.features_unlocked == []

    def test_first_lesson_milestone_rewards_once(self, orchestrator, store):
        result = orchestrator.apply_update("u1", ProgressionUpdate(lessons_completed=["intro"]))

        # Milestone: 100 xp and 3 tickets; the 100 xp reaches level 2 for 2 more
        assert result.new_level == 2
        assert result.gacha_tickets == 5
        assert any(r.source == "milestone" and r.source_id == "first_lesson" for r in result.rewards)

        again = orchestrator.apply_update("u1", ProgressionUpdate(lessons_completed=["intro"]))
        assert again.gacha_tickets == 5
        assert again.rewards == []

        record = store.read("u1")
        assert record.milestones == frozenset({"first_lesson"})
        assert record.lessons_completed == 1

    def test_perfect_quiz_unlocks_achievement(self, orchestrator, store):
        update = ProgressionUpdate(quizzes_completed=1, custom_data={"score": 100, "perfect_score": True})
        result = orchestrator.apply_update("u1", update)

        assert "perfect_quiz" in result.achievements_unlocked
        record = store.read("u1")
        assert record.perfect_scores == 1
        assert record.quizzes_completed == 1
        assert record.gacha_tickets == 3  # 1 from the achievement, 2 from reaching level 2

    def test_debate_results(self, orchestrator, store):
        update = ProgressionUpdate(custom_data={"debate_results": [True, True, False, True]})
        result = orchestrator.apply_update("u1", update)

        record = store.read("u1")
        assert record.debate_wins == 3
        assert record.debate_win_streak == 1
        assert "first_debate" in result.achievements_unlocked

    def test_failed_quizzes_counted(self, orchestrator, store):
        for _ in range(3):
            orchestrator.apply_update("u1", ProgressionUpdate(quizzes_completed=1, custom_data={"passed": False}))

        record = store.read("u1")
        assert record.failed_quizzes == 3
        assert record.achievements["learning_from_failure"].completed is True

    def test_quiz_scores_adjust_difficulty(self, orchestrator, store):
        for _ in range(3):
            orchestrator.apply_update("u1", ProgressionUpdate(quizzes_completed=1, custom_data={"score": 95}))

        assert store.read("u1").difficulty_multiplier == 1.2
        assert orchestrator.difficulty("u1").tier.value == "advanced"

    def test_speed_achievement_uses_time_spent(self, orchestrator):
        slow = orchestrator.apply_update("u1", ProgressionUpdate(lessons_completed=["a"], time_spent=600))
        fast = orchestrator.apply_update("u1", ProgressionUpdate(lessons_completed=["b"], time_spent=120))

        assert "speed_thinker" not in slow.achievements_unlocked
        assert "speed_thinker" in fast.achievements_unlocked

    def test_bad_definition_does_not_block_update(self, store, clock, caplog):
        catalog = build_catalog(
            [{"id": "mystery", "criteria": {"type": "moon_phase"}, "rewards": {"experience": 999}}],
            [],
            PHILOSOPHERS,
        )
        orchestrator = ProgressionOrchestrator(store, catalog, clock=clock)

        with caplog.at_level(logging.WARNING):
            result = orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=500))

        assert result.new_level == 3
        assert result.gacha_tickets == 4
        assert result.achievements_unlocked == []
        assert "moon_phase" in caplog.text

    def test_invalid_updates_rejected(self, orchestrator):
        with pytest.raises(InvalidUpdate):
            coerce_update({"experience_delta": -5})
        with pytest.raises(InvalidUpdate):
            coerce_update({"lessons_completed": ["  "]})
        with pytest.raises(InvalidUpdate):
            orchestrator.apply_update("", ProgressionUpdate(experience_delta=5))


class TestConsistency:
    """Tests for optimistic locking and failure handling."""

    def test_version_conflict_is_recomputed(self, session_factory, catalog, clock):
        store = ConflictingStore(session_factory, conflicts=1)
        orchestrator = ProgressionOrchestrator(store, catalog, clock=clock)

        result = orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=500))

        # Recomputed on top of the concurrent +10 tickets
        assert result.gacha_tickets == 14
        record = store.read("u1")
        assert record.gacha_tickets == 14
        assert record.level == 3
        assert record.version == 2

    def test_repeated_conflicts_give_up(self, session_factory, catalog, clock):
        store = ConflictingStore(session_factory, conflicts=10)
        orchestrator = ProgressionOrchestrator(store, catalog, clock=clock, max_retries=3)

        with pytest.raises(StoreUnavailable):
            orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=500))

        assert store.writes == 3
        assert store.read("u1").experience == 0

    def test_write_failure_applies_nothing(self, session_factory, catalog, clock):
        store = FailingStore(session_factory)
        orchestrator = ProgressionOrchestrator(store, catalog, clock=clock)

        with pytest.raises(StoreUnavailable):
            orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=500, lessons_completed=["intro"]))

        record = store.read("u1")
        assert record.level == 1
        assert record.gacha_tickets == 0
        assert record.completed_lessons == frozenset()


class TestDeferredUpdates:
    """Tests for buffered updates."""

    def test_deferred_update_buffers(self, orchestrator, store):
        result = orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=500), immediate=False)

        assert result.deferred is True
        assert orchestrator.pending_count("u1") == 1
        assert not store.exists("u1")

    def test_flush_applies_in_order(self, orchestrator, store):
        orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=100), immediate=False)
        orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=300), immediate=False)

        results = orchestrator.flush_pending()

        assert [r.new_level for r in results["u1"]] == [2, 3]
        assert orchestrator.pending_count() == 0
        assert store.read("u1").gacha_tickets == 4

    def test_flush_keeps_updates_when_store_down(self, session_factory, catalog, clock):
        orchestrator = ProgressionOrchestrator(FailingStore(session_factory), catalog, clock=clock)
        orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=100), immediate=False)
        orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=200), immediate=False)

        results = orchestrator.flush_pending("u1")

        assert results == {}
        assert orchestrator.pending_count("u1") == 2


class TestStreaks:
    """Tests for ProgressionOrchestrator.update_streak."""

    def test_consecutive_days(self, orchestrator, clock):
        assert orchestrator.update_streak("u1").new_streak == 1
        clock.advance(hours=26)
        assert orchestrator.update_streak("u1").new_streak == 2

    def test_same_day_writes_nothing(self, orchestrator, store, clock):
        orchestrator.update_streak("u1")
        before = store.read("u1")

        clock.advance(hours=5)
        result = orchestrator.update_streak("u1")

        after = store.read("u1")
        assert result.changed is False
        assert result.new_streak == 1
        assert after.version == before.version
        assert after.last_streak_update == before.last_streak_update

    def test_gap_resets(self, orchestrator, store, clock):
        give(store, "u1", streak_days=4, last_streak_update=clock.now - timedelta(hours=50))

        result = orchestrator.update_streak("u1")

        assert result.new_streak == 1
        assert store.read("u1").streak_days == 1

    def test_seventh_day_reward(self, orchestrator, store, clock):
        give(store, "u1", streak_days=6, last_streak_update=clock.now - timedelta(hours=25))

        result = orchestrator.update_streak("u1")

        assert result.new_streak == 7
        assert result.reward.gacha_tickets == 3
        assert result.reward.experience == 500
        assert "weekly_streak" in result.progression.achievements_unlocked

        record = store.read("u1")
        # 3 streak + 4 for reaching level 3 + 2 from weekly_streak
        assert record.gacha_tickets == 9
        assert record.experience == 750


class TestReadSide:
    """Tests for achievement listings, milestones and the summary."""

    def test_check_achievement_is_idempotent(self, orchestrator, store):
        orchestrator.apply_update("u1", ProgressionUpdate(quizzes_completed=1, custom_data={"perfect_score": True}))
        before = store.read("u1")

        outcome = orchestrator.check_achievement("u1", "perfect_quiz")

        assert outcome.already_unlocked is True
        after = store.read("u1")
        assert after.version == before.version
        assert after.gacha_tickets == before.gacha_tickets

    def test_checked_reward_that_levels_up_runs_level_achievements(self, store, clock):
        """Experience from an explicitly checked achievement can unlock level-based ones."""
        catalog = build_catalog(
            [
                {"id": "scholar", "criteria": {"type": "perfect_score", "minCount": 1},
                 "rewards": {"experience": 300}},
                {"id": "level_two", "criteria": {"type": "player_level", "minLevel": 2},
                 "rewards": {"gachaTickets": 3}},
            ],
            [],
            PHILOSOPHERS,
        )
        orchestrator = ProgressionOrchestrator(store, catalog, clock=clock)
        give(store, "u1", perfect_scores=1)

        outcome = orchestrator.check_achievement("u1", "scholar")

        assert outcome.unlocked is True
        record = store.read("u1")
        assert record.level == 2
        assert record.achievements["level_two"].completed is True
        assert record.gacha_tickets == 5

    def test_achievement_listing(self, orchestrator, catalog):
        orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=500))
        listing = orchestrator.achievements("u1")

        assert len(listing) == len(catalog.achievements)
        rising = next(a for a in listing if a["id"] == "rising_thinker")
        assert rising["current_value"] == 3
        assert rising["completed"] is False

    def test_milestone_statuses(self, orchestrator):
        orchestrator.apply_update("u1", ProgressionUpdate(lessons_completed=["a", "b"]))
        statuses = {s.milestone_id: s for s in orchestrator.milestones("u1")}

        assert statuses["first_lesson"].rewarded is True
        assert statuses["philosophy_novice"].current_value == 2
        assert statuses["philosophy_novice"].progress == pytest.approx(0.2)

    def test_summary(self, orchestrator):
        orchestrator.apply_update("u1", ProgressionUpdate(experience_delta=500))
        summary = orchestrator.summary("u1")

        assert summary["level"] == 3
        assert summary["experience_to_next_level"] == 400
        assert summary["gacha_tickets"] == 4
        assert summary["next_feature"] == {"level": 5, "feature": "debate_mode"}
        assert len(summary["upcoming_milestones"]) == 3
