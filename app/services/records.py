"""In-memory shapes of a user's progression record and of a write delta.

UserProgressionRecord is a read-only snapshot handed to the evaluators.
ProgressionDelta is everything one activity event changes, applied by the
record store in a single transaction guarded by ``expected_version``.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from app.services.rarity import Rarity

SCALAR_FIELDS = (
    "level",
    "experience",
    "streak_days",
    "last_streak_update",
    "gacha_tickets",
    "quizzes_completed",
    "perfect_scores",
    "failed_quizzes",
    "debate_wins",
    "debate_win_streak",
    "total_time_spent",
    "pulls_since_rare",
    "difficulty_multiplier",
)
"""User columns a delta may overwrite."""


@dataclass(frozen=True)
class AchievementProgress:
    current_value: float
    target_value: float
    completed: bool = False
    unlocked_at: Optional[datetime] = None


@dataclass(frozen=True)
class OwnedCollectible:
    collectible_id: str
    rarity: Rarity
    level: int = 1
    experience: int = 0
    acquired_at: Optional[datetime] = None
    duplicate_count: int = 0


@dataclass(frozen=True)
class UserProgressionRecord:
    user_id: str
    version: int = 0
    level: int = 1
    experience: int = 0
    streak_days: int = 0
    last_streak_update: Optional[datetime] = None
    gacha_tickets: int = 0
    completed_lessons: FrozenSet[str] = frozenset()
    quizzes_completed: int = 0
    perfect_scores: int = 0
    failed_quizzes: int = 0
    debate_wins: int = 0
    debate_win_streak: int = 0
    total_time_spent: int = 0
    pulls_since_rare: int = 0
    difficulty_multiplier: float = 1.0
    achievements: Dict[str, AchievementProgress] = field(default_factory=dict)
    milestones: FrozenSet[str] = frozenset()
    collection: Dict[str, OwnedCollectible] = field(default_factory=dict)
    unlocked_features: FrozenSet[str] = frozenset()
    recent_scores: Tuple[float, ...] = ()

    @property
    def lessons_completed(self) -> int:
        return len(self.completed_lessons)


@dataclass(frozen=True)
class PullRecord:
    """One pull as appended to the pull history log."""
    collectible_id: str
    rarity: Rarity
    is_new: bool
    duplicate_count: int
    pity_applied: bool
    pulled_at: datetime


@dataclass
class ProgressionDelta:
    """The consolidated write for one activity event."""
    expected_version: int
    user_fields: Dict[str, Any] = field(default_factory=dict)
    lessons: List[str] = field(default_factory=list)
    achievements: Dict[str, AchievementProgress] = field(default_factory=dict)
    milestones: List[str] = field(default_factory=list)
    collection: Dict[str, OwnedCollectible] = field(default_factory=dict)
    features: List[str] = field(default_factory=list)
    pulls: List[PullRecord] = field(default_factory=list)
    quiz_scores: List[float] = field(default_factory=list)
    level_ups: List[Tuple[int, int, int]] = field(default_factory=list)  # (from, to, tickets)
    occurred_at: Optional[datetime] = None

    def is_empty(self) -> bool:
        return not (
            self.user_fields or self.lessons or self.achievements or self.milestones
            or self.collection or self.features or self.pulls or self.quiz_scores
        )
