"""Achievement criterion kinds.

Every achievement carries exactly one criterion, parsed from its catalog entry
into one of the frozen dataclasses below. Each kind declares the activity
triggers that can change its outcome, which is how the orchestrator decides
which achievements to re-check after an update.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, FrozenSet, Mapping, Union

logger = logging.getLogger(__name__)

# Activity triggers
LESSON = "lesson"
QUIZ = "quiz"
DEBATE = "debate"
COLLECTION = "collection"
STREAK = "streak"
LEVEL = "level"
ALL_TRIGGERS = frozenset({LESSON, QUIZ, DEBATE, COLLECTION, STREAK, LEVEL})


@dataclass(frozen=True)
class PerfectScoreCount:
    min_count: int
    triggers: ClassVar[FrozenSet[str]] = frozenset({QUIZ})


@dataclass(frozen=True)
class TimeLimitCompletion:
    """Met by a single activity finished within ``max_seconds``."""
    max_seconds: int
    triggers: ClassVar[FrozenSet[str]] = frozenset({LESSON, QUIZ})


@dataclass(frozen=True)
class DebateWins:
    min_wins: int
    triggers: ClassVar[FrozenSet[str]] = frozenset({DEBATE})


@dataclass(frozen=True)
class DebateWinStreak:
    min_streak: int
    triggers: ClassVar[FrozenSet[str]] = frozenset({DEBATE})


@dataclass(frozen=True)
class CollectionSize:
    min_count: int
    triggers: ClassVar[FrozenSet[str]] = frozenset({COLLECTION})


@dataclass(frozen=True)
class LegendaryCollection:
    min_count: int
    triggers: ClassVar[FrozenSet[str]] = frozenset({COLLECTION})


@dataclass(frozen=True)
class DailyStreak:
    min_days: int
    triggers: ClassVar[FrozenSet[str]] = frozenset({STREAK})


@dataclass(frozen=True)
class PlayerLevel:
    min_level: int
    triggers: ClassVar[FrozenSet[str]] = frozenset({LEVEL})


@dataclass(frozen=True)
class LessonCount:
    min_count: int
    triggers: ClassVar[FrozenSet[str]] = frozenset({LESSON})


@dataclass(frozen=True)
class LearningFromFailure:
    min_failures: int
    triggers: ClassVar[FrozenSet[str]] = frozenset({QUIZ})


@dataclass(frozen=True)
class TimeOfDay:
    """Met by an activity completed in [start_hour, end_hour) UTC."""
    start_hour: int
    end_hour: int
    triggers: ClassVar[FrozenSet[str]] = frozenset({LESSON})


@dataclass(frozen=True)
class UnsupportedCriterion:
    """A catalog entry whose type has no checker. Never met."""
    type_name: str
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)
    triggers: ClassVar[FrozenSet[str]] = ALL_TRIGGERS


Criterion = Union[
    PerfectScoreCount,
    TimeLimitCompletion,
    DebateWins,
    DebateWinStreak,
    CollectionSize,
    LegendaryCollection,
    DailyStreak,
    PlayerLevel,
    LessonCount,
    LearningFromFailure,
    TimeOfDay,
    UnsupportedCriterion,
]


_PARSERS: Dict[str, Callable[[Mapping[str, Any]], Criterion]] = {
    "perfect_score": lambda c: PerfectScoreCount(int(c.get("minCount", 1))),
    "time_limit": lambda c: TimeLimitCompletion(int(c["maxTime"])),
    "lesson_speedrun": lambda c: TimeLimitCompletion(int(c["maxTime"])),
    "debate_wins": lambda c: DebateWins(int(c["minWins"])),
    "win_streak": lambda c: DebateWinStreak(int(c["minStreak"])),
    "collection_count": lambda c: CollectionSize(int(c["minCount"])),
    "legendary_collection": lambda c: LegendaryCollection(int(c.get("minCount", 1))),
    "daily_streak": lambda c: DailyStreak(int(c["minDays"])),
    "player_level": lambda c: PlayerLevel(int(c["minLevel"])),
    "school_lessons": lambda c: LessonCount(int(c["minCount"])),
    "learning_from_failure": lambda c: LearningFromFailure(int(c.get("minFailures", 1))),
    "time_based": lambda c: TimeOfDay(int(c["startHour"]), int(c["endHour"])),
}


def parse_criterion(data: Mapping[str, Any]) -> Criterion:
    """
    Build a criterion from its catalog representation.

    Unknown types and entries with missing or malformed thresholds are logged
    and become UnsupportedCriterion, so one bad definition never prevents the
    rest of the catalog from loading.

    Args:
        data: Mapping with a ``type`` key plus type-specific thresholds

    Returns:
        Parsed criterion
    """
    type_name = str(data.get("type", ""))
    parser = _PARSERS.get(type_name)
    if parser is None:
        logger.warning(f"Unknown achievement criteria type: {type_name!r}")
        return UnsupportedCriterion(type_name, dict(data))

    try:
        return parser(data)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Malformed {type_name} criteria {dict(data)}: {e}")
        return UnsupportedCriterion(type_name, dict(data))


def supported_types() -> FrozenSet[str]:
    """Criterion type names the parser understands."""
    return frozenset(_PARSERS)
