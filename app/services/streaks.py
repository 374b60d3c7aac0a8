"""Daily streak continuity and milestone progress.

Streak days are whole 24-hour periods since the last streak update, not
calendar days: a check-in 26 hours after the previous one continues the
streak, 50 hours later resets it.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from app.constants import (
    MILLISECONDS_PER_DAY,
    STREAK_REWARD_EXPERIENCE,
    STREAK_REWARD_INTERVAL,
    STREAK_REWARD_TICKETS_PER_WEEK,
)
from app.services.catalog import MilestoneDefinition, Reward
from app.services.records import UserProgressionRecord


@dataclass(frozen=True)
class StreakOutcome:
    new_streak: int
    changed: bool
    days_since_last_update: Optional[int]


@dataclass(frozen=True)
class MilestoneStatus:
    milestone_id: str
    name: str
    current_value: int
    required_value: int
    progress: float
    completed: bool
    rewarded: bool
    reward: Reward


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days from ``earlier`` to ``later``: floor(delta_ms / 86_400_000)."""
    delta = later - earlier
    delta_ms = (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000
    return delta_ms // MILLISECONDS_PER_DAY


def compute_streak(
    streak_days: int,
    last_streak_update: Optional[datetime],
    now: datetime
) -> StreakOutcome:
    """
    Advance a streak for a check-in at ``now``.

    - No previous update: streak starts at 1
    - Exactly one day since the last update: streak + 1
    - Same day: unchanged (repeated check-ins are idempotent)
    - More than one day: streak resets to 1

    Args:
        streak_days: Current streak
        last_streak_update: Time of the last streak change, None if never
        now: Check-in time

    Returns:
        StreakOutcome; ``changed`` is False when nothing should be written
    """
    if last_streak_update is None:
        return StreakOutcome(new_streak=1, changed=True, days_since_last_update=None)

    days = days_between(last_streak_update, now)

    if days == 1:
        return StreakOutcome(new_streak=streak_days + 1, changed=True, days_since_last_update=days)
    if days <= 0:
        # Also covers a clock that moved backwards
        return StreakOutcome(new_streak=streak_days, changed=False, days_since_last_update=days)
    return StreakOutcome(new_streak=1, changed=True, days_since_last_update=days)


def streak_reward(new_streak: int) -> Optional[Reward]:
    """Reward for reaching a multiple of seven days, else None."""
    if new_streak <= 0 or new_streak % STREAK_REWARD_INTERVAL != 0:
        return None
    weeks = new_streak // STREAK_REWARD_INTERVAL
    return Reward(
        experience=STREAK_REWARD_EXPERIENCE,
        gacha_tickets=weeks * STREAK_REWARD_TICKETS_PER_WEEK,
    )


def milestone_counter(record: UserProgressionRecord, counter: str) -> int:
    """Read the counter a milestone tracks from the record."""
    return int(getattr(record, counter, 0) or 0)


def milestone_status(record: UserProgressionRecord, milestone: MilestoneDefinition) -> MilestoneStatus:
    """
    Derive a milestone's progress from the record's counters.

    progress = min(current / required, 1.0); nothing about progress is
    stored, only whether the one-time reward has been granted.
    """
    current = milestone_counter(record, milestone.counter)
    progress = min(current / milestone.required_value, 1.0) if milestone.required_value > 0 else 1.0
    return MilestoneStatus(
        milestone_id=milestone.id,
        name=milestone.name,
        current_value=current,
        required_value=milestone.required_value,
        progress=progress,
        completed=progress >= 1.0,
        rewarded=milestone.id in record.milestones,
        reward=milestone.reward,
    )


def newly_completed_milestones(
    record: UserProgressionRecord,
    milestones: List[MilestoneDefinition]
) -> List[MilestoneDefinition]:
    """Milestones complete on ``record`` whose reward has not been granted yet."""
    result = []
    for milestone in milestones:
        status = milestone_status(record, milestone)
        if status.completed and not status.rewarded:
            result.append(milestone)
    return result
