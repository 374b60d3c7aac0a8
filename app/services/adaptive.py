"""Adaptive difficulty from a rolling window of recent quiz scores."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from app.constants import (
    DIFFICULTY_HIGH_SCORE,
    DIFFICULTY_LOW_SCORE,
    DIFFICULTY_MULTIPLIERS,
    DIFFICULTY_WINDOW,
    TIER_ADVANCED_SCORE,
    TIER_INTERMEDIATE_SCORE,
)


class DifficultyTier(str, Enum):
    """Recommended content tier."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


@dataclass(frozen=True)
class DifficultyRecommendation:
    multiplier: float
    tier: DifficultyTier
    confidence: float
    average_score: Optional[float]
    sample_size: int


def recent_window(scores: Sequence[float], window: int = DIFFICULTY_WINDOW) -> list:
    """The last ``window`` scores, oldest first."""
    return list(scores)[-window:] if window > 0 else []


def difficulty_multiplier(scores: Sequence[float]) -> float:
    """
    Multiplier for upcoming quizzes.

    Average above 85 makes quizzes harder (1.2), below 60 easier (0.8);
    anything else, including no history, keeps 1.0.

    Args:
        scores: Quiz scores (0-100), oldest first

    Returns:
        Difficulty multiplier
    """
    window = recent_window(scores)
    if not window:
        return DIFFICULTY_MULTIPLIERS["normal"]

    average = sum(window) / len(window)
    if average > DIFFICULTY_HIGH_SCORE:
        return DIFFICULTY_MULTIPLIERS["harder"]
    if average < DIFFICULTY_LOW_SCORE:
        return DIFFICULTY_MULTIPLIERS["easier"]
    return DIFFICULTY_MULTIPLIERS["normal"]


def recommend(scores: Sequence[float]) -> DifficultyRecommendation:
    """
    Recommend a tier and multiplier from recent scores.

    Tiers by window average:
    - >= 85: advanced, confidence (avg - 85) * 6.67
    - >= 65: intermediate, confidence (avg - 65) * 5
    - otherwise beginner, confidence 100 - (65 - avg) * 2

    Confidence is clamped to [0, 100]. Without any history the recommendation
    is intermediate at 50% confidence.
    """
    window = recent_window(scores)
    multiplier = difficulty_multiplier(window)

    if not window:
        return DifficultyRecommendation(
            multiplier=multiplier,
            tier=DifficultyTier.INTERMEDIATE,
            confidence=50.0,
            average_score=None,
            sample_size=0,
        )

    average = sum(window) / len(window)
    if average >= TIER_ADVANCED_SCORE:
        tier = DifficultyTier.ADVANCED
        confidence = (average - TIER_ADVANCED_SCORE) * 6.67
    elif average >= TIER_INTERMEDIATE_SCORE:
        tier = DifficultyTier.INTERMEDIATE
        confidence = (average - TIER_INTERMEDIATE_SCORE) * 5
    else:
        tier = DifficultyTier.BEGINNER
        confidence = 100 - (TIER_INTERMEDIATE_SCORE - average) * 2

    return DifficultyRecommendation(
        multiplier=multiplier,
        tier=tier,
        confidence=round(max(0.0, min(100.0, confidence)), 1),
        average_score=round(average, 1),
        sample_size=len(window),
    )
