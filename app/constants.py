"""Application-wide constants and configuration values.

This module centralizes the numbers that define the reward economy, making
them easier to maintain and balance.
"""

# Session
COOKIE_NAME = "pgr_uid"
"""Cookie holding the anonymous user id."""

USER_ID_PREFIX = "pgr_"
"""Prefix for generated user ids."""

# Leveling
EXPERIENCE_PER_LEVEL_UNIT = 100
"""Experience scale of the level curve: level = floor(sqrt(exp / 100)) + 1."""

TICKETS_PER_LEVEL = 2
"""Gacha tickets granted for every level gained."""

FEATURE_UNLOCKS = {
    5: "debate_mode",
    10: "advanced_analytics",
    15: "custom_quizzes",
    20: "philosopher_teams",
    25: "daily_challenges",
    30: "leaderboards",
}
"""Level at which each feature becomes available."""

# Activity experience
LESSON_EXPERIENCE_PER_POINT = 10
"""Experience per score point of a finished lesson."""

QUIZ_EXPERIENCE_PER_POINT = 15
"""Experience per score point of a finished quiz."""

# Gacha
SINGLE_PULL_COST = 1
"""Tickets debited for one pull."""

MULTI_PULL_COUNT = 10
"""Draws in a batch pull."""

MULTI_PULL_COST = 9
"""Tickets debited for a batch pull (one draw free)."""

PITY_THRESHOLD = 10
"""Pulls without rare-or-better after which the next pull is upgraded."""

RARITY_WEIGHTS = [
    ("common", 0.60),
    ("rare", 0.30),
    ("epic", 0.08),
    ("legendary", 0.02),
]
"""Drop rates, lowest tier first. Must sum to 1.0."""

DUPLICATE_BONUS_EXPERIENCE = 50
"""Collectible experience granted when a pull yields an owned collectible."""

PULL_HISTORY_LIMIT = 50
"""Default number of pull history rows returned."""

# Collectible growth
COLLECTIBLE_MAX_LEVEL = 50
"""Level cap of an owned collectible."""

COLLECTIBLE_EXPERIENCE_PER_LEVEL = 100
"""Collectible experience needed per level (multiplied by current level)."""

COLLECTIBLE_STAT_GROWTH_PER_LEVEL = 0.05
"""Stat multiplier gained per collectible level above 1."""

COLLECTIBLE_STAT_GROWTH_PER_DUPLICATE = 0.1
"""Stat multiplier gained per duplicate pulled."""

ENHANCE_EXPERIENCE = 150
"""Collectible experience gained by spending one duplicate."""

# Streaks
MILLISECONDS_PER_DAY = 86_400_000
"""Length of a streak day."""

STREAK_REWARD_INTERVAL = 7
"""A streak reward is granted every this many consecutive days."""

STREAK_REWARD_TICKETS_PER_WEEK = 3
"""Tickets per completed streak week."""

STREAK_REWARD_EXPERIENCE = 500
"""Experience granted with each streak reward."""

# Adaptive difficulty
DIFFICULTY_WINDOW = 5
"""Number of recent quiz scores considered."""

DIFFICULTY_HIGH_SCORE = 85
"""Average above which quizzes get harder."""

DIFFICULTY_LOW_SCORE = 60
"""Average below which quizzes get easier."""

DIFFICULTY_MULTIPLIERS = {"easier": 0.8, "normal": 1.0, "harder": 1.2}
"""Multiplier applied to quiz difficulty."""

TIER_ADVANCED_SCORE = 85
"""Average score for the advanced tier."""

TIER_INTERMEDIATE_SCORE = 65
"""Average score for the intermediate tier."""

# Orchestration
MAX_VERSION_RETRIES = 3
"""Re-read and recompute attempts after an optimistic lock conflict."""

SUMMARY_MILESTONE_COUNT = 3
"""Incomplete milestones listed in the progression summary."""

# Rate limits
PULL_RATE_LIMIT = "30/minute"
"""Per-IP limit on gacha pulls."""

STREAK_RETRY_AFTER_SECONDS = 30
"""Retry-After sent when a check-in cannot reach the record store."""
