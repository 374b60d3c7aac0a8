"""Tests for criterion parsing and the content catalog."""
import logging
import typing

from app.content.philosophers import PHILOSOPHERS
from app.services.achievements import CHECKERS
from app.services.catalog import build_catalog, validate_catalog
from app.services.criteria import (
    Criterion,
    DailyStreak,
    PerfectScoreCount,
    TimeOfDay,
    UnsupportedCriterion,
    parse_criterion,
    supported_types,
)
from app.services.rarity import Rarity


class TestParseCriterion:
    """Tests for parse_criterion."""

    def test_known_types(self):
        assert parse_criterion({"type": "perfect_score", "minCount": 10}) == PerfectScoreCount(10)
        assert parse_criterion({"type": "daily_streak", "minDays": 7}) == DailyStreak(7)
        assert parse_criterion({"type": "time_based", "startHour": 22, "endHour": 3}) == TimeOfDay(22, 3)

    def test_unknown_type_is_unsupported_and_logged(self, caplog):
        with caplog.at_level(logging.WARNING):
            criterion = parse_criterion({"type": "moon_phase", "phase": "full"})

        assert isinstance(criterion, UnsupportedCriterion)
        assert criterion.type_name == "moon_phase"
        assert "moon_phase" in caplog.text

    def test_malformed_threshold_is_unsupported(self, caplog):
        with caplog.at_level(logging.WARNING):
            criterion = parse_criterion({"type": "debate_wins", "minWins": "many"})

        assert isinstance(criterion, UnsupportedCriterion)
        assert "Malformed" in caplog.text

    def test_missing_threshold_is_unsupported(self):
        assert isinstance(parse_criterion({"type": "daily_streak"}), UnsupportedCriterion)

    def test_every_criterion_kind_has_a_checker(self):
        """Adding a criterion kind without a checker is caught here."""
        assert set(typing.get_args(Criterion)) == set(CHECKERS)

    def test_supported_types_cover_content(self):
        from app.content.achievements import ACHIEVEMENTS
        for achievement in ACHIEVEMENTS:
            assert achievement["criteria"]["type"] in supported_types()


class TestContentCatalog:
    """Tests for the bundled catalog."""

    def test_default_catalog_is_consistent(self, catalog):
        assert validate_catalog(catalog) == []

    def test_candidates_for_trigger(self, catalog):
        candidates = catalog.candidates_for({"streak"})

        assert "weekly_streak" in candidates
        assert "monthly_streak" in candidates
        assert "perfect_quiz" not in candidates

    def test_candidates_without_duplicates(self, catalog):
        candidates = catalog.candidates_for({"lesson", "quiz"})
        assert len(candidates) == len(set(candidates))
        assert "speed_thinker" in candidates

    def test_unsupported_criterion_is_candidate_for_everything(self):
        catalog = build_catalog(
            [{"id": "mystery", "criteria": {"type": "moon_phase"}, "rewards": {"experience": 10}}],
            [],
            PHILOSOPHERS,
        )
        for trigger in ("lesson", "quiz", "debate", "collection", "streak", "level"):
            assert catalog.candidates_for({trigger}) == ["mystery"]

    def test_pool_excludes_unpullable(self, catalog):
        legendary = [c.id for c in catalog.pool.slice(Rarity.LEGENDARY)]

        assert "socrates" in legendary
        assert "socrates_special" not in legendary
        assert catalog.collectible("socrates_special") is not None

    def test_pool_rates(self, catalog):
        assert catalog.pool.rates() == {"common": 0.6, "rare": 0.3, "epic": 0.08, "legendary": 0.02}
        assert catalog.pool.pity_threshold == 10


class TestValidateCatalog:
    """Tests for catalog validation."""

    def test_reports_bad_weights(self):
        catalog = build_catalog([], [], PHILOSOPHERS, weights=[("common", 0.5), ("rare", 0.3)])
        problems = validate_catalog(catalog)
        assert any("sum to" in p for p in problems)

    def test_reports_empty_rarity(self):
        commons = [p for p in PHILOSOPHERS if p["rarity"] == "common"]
        problems = validate_catalog(build_catalog([], [], commons))
        assert any("rarity legendary" in p for p in problems)

    def test_reports_unsupported_and_bad_milestones(self):
        catalog = build_catalog(
            [{"id": "mystery", "criteria": {"type": "moon_phase"}}],
            [
                {"id": "m1", "counter": "sunsets_seen", "requiredValue": 3},
                {"id": "m2", "counter": "level", "requiredValue": 5, "reward": {"collectible": "nobody"}},
            ],
            PHILOSOPHERS,
        )
        problems = validate_catalog(catalog)

        assert any("mystery" in p for p in problems)
        assert any("sunsets_seen" in p for p in problems)
        assert any("nobody" in p for p in problems)
