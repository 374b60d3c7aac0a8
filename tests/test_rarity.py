"""Tests for weighted rarity selection and the pity guarantee."""
import random
from collections import Counter

import pytest

from app.services.rarity import Rarity, RarityResolver
from tests.helpers import scripted_random

WEIGHTS = [
    (Rarity.COMMON, 0.60),
    (Rarity.RARE, 0.30),
    (Rarity.EPIC, 0.08),
    (Rarity.LEGENDARY, 0.02),
]


class TestWeightedDraw:
    """Tests for the cumulative weight walk."""

    def test_draws_follow_cumulative_table(self):
        values = [0.0, 0.59, 0.61, 0.89, 0.91, 0.97, 0.985, 0.999]
        resolver = RarityResolver(WEIGHTS, 10, scripted_random(values))

        drawn = [resolver.draw() for _ in values]

        assert drawn == [
            Rarity.COMMON, Rarity.COMMON,
            Rarity.RARE, Rarity.RARE,
            Rarity.EPIC, Rarity.EPIC,
            Rarity.LEGENDARY, Rarity.LEGENDARY,
        ]

    def test_rounding_gap_falls_back_to_last_tier(self):
        """A table summing just under 1.0 still returns a tier."""
        weights = [(Rarity.COMMON, 0.5), (Rarity.RARE, 0.4999)]
        resolver = RarityResolver(weights, 10, scripted_random([0.99995]))
        assert resolver.draw() == Rarity.RARE

    def test_observed_rates_match_weights(self):
        """Over many draws the rates approach the configured weights."""
        resolver = RarityResolver(WEIGHTS, 10, random.Random(42))
        counts = Counter(resolver.draw() for _ in range(20000))

        assert counts[Rarity.COMMON] / 20000 == pytest.approx(0.60, abs=0.02)
        assert counts[Rarity.RARE] / 20000 == pytest.approx(0.30, abs=0.02)
        assert counts[Rarity.EPIC] / 20000 == pytest.approx(0.08, abs=0.01)
        assert counts[Rarity.LEGENDARY] / 20000 == pytest.approx(0.02, abs=0.005)

    def test_table_needs_two_tiers(self):
        with pytest.raises(ValueError):
            RarityResolver([(Rarity.COMMON, 1.0)], 10)

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValueError):
            RarityResolver(WEIGHTS, 0)


class TestPity:
    """Tests for the pity counter."""

    def test_common_increments_counter(self):
        resolver = RarityResolver(WEIGHTS, 10, scripted_random([0.1]))
        assert resolver.resolve(3) == (Rarity.COMMON, 4, False)

    def test_natural_rare_resets_counter(self):
        resolver = RarityResolver(WEIGHTS, 10, scripted_random([0.7]))
        assert resolver.resolve(7) == (Rarity.RARE, 0, False)

    def test_eleventh_pull_forced_after_ten_commons(self):
        """Ten commons in a row guarantee at least rare on the next pull."""
        resolver = RarityResolver(WEIGHTS, 10, scripted_random([0.1], repeat_last=True))

        counter = 0
        for _ in range(10):
            rarity, counter, pity = resolver.resolve(counter)
            assert rarity == Rarity.COMMON
            assert pity is False
        assert counter == 10

        rarity, counter, pity = resolver.resolve(counter)
        assert rarity == Rarity.RARE
        assert pity is True
        assert counter == 0

    def test_pity_never_downgrades(self):
        """A natural legendary at the threshold stays legendary."""
        resolver = RarityResolver(WEIGHTS, 10, scripted_random([0.999]))
        assert resolver.resolve(10) == (Rarity.LEGENDARY, 0, False)

    def test_below_threshold_no_pity(self):
        resolver = RarityResolver(WEIGHTS, 10, scripted_random([0.1]))
        assert resolver.resolve(9) == (Rarity.COMMON, 10, False)
