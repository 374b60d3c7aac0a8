"""Achievement definitions.

Each entry's ``criteria`` names a criterion ``type`` and its thresholds; the
reward is granted once, when the criterion is first met.
"""

ACHIEVEMENTS = [
    {
        "id": "perfect_quiz",
        "name": "Flawless Reasoning",
        "description": "Finish a quiz without a single mistake.",
        "category": "quiz",
        "criteria": {"type": "perfect_score", "minCount": 1},
        "rewards": {"experience": 100, "gachaTickets": 1},
    },
    {
        "id": "perfectionist",
        "name": "Perfectionist",
        "description": "Collect ten perfect quiz scores.",
        "category": "quiz",
        "criteria": {"type": "perfect_score", "minCount": 10},
        "rewards": {"experience": 500, "gachaTickets": 5},
    },
    {
        "id": "speed_thinker",
        "name": "Speed Thinker",
        "description": "Finish a lesson in under five minutes.",
        "category": "learning",
        "criteria": {"type": "time_limit", "maxTime": 300},
        "rewards": {"experience": 150, "gachaTickets": 1},
    },
    {
        "id": "first_debate",
        "name": "First Victory",
        "description": "Win a philosophical debate.",
        "category": "debate",
        "criteria": {"type": "debate_wins", "minWins": 1},
        "rewards": {"experience": 100, "gachaTickets": 1},
    },
    {
        "id": "debate_champion",
        "name": "Debate Champion",
        "description": "Win five debates in a row.",
        "category": "debate",
        "criteria": {"type": "win_streak", "minStreak": 5},
        "rewards": {"experience": 400, "gachaTickets": 3},
    },
    {
        "id": "philosopher_collector",
        "name": "Collector",
        "description": "Own five different philosophers.",
        "category": "collection",
        "criteria": {"type": "collection_count", "minCount": 5},
        "rewards": {"experience": 200, "gachaTickets": 2},
    },
    {
        "id": "legend_seeker",
        "name": "Legend Seeker",
        "description": "Own a legendary philosopher.",
        "category": "collection",
        "criteria": {"type": "legendary_collection", "minCount": 1},
        "rewards": {"experience": 300, "gachaTickets": 0},
    },
    {
        "id": "weekly_streak",
        "name": "Week of Wisdom",
        "description": "Study seven days in a row.",
        "category": "streak",
        "criteria": {"type": "daily_streak", "minDays": 7},
        "rewards": {"experience": 250, "gachaTickets": 2},
    },
    {
        "id": "monthly_streak",
        "name": "Disciplined Mind",
        "description": "Study thirty days in a row.",
        "category": "streak",
        "criteria": {"type": "daily_streak", "minDays": 30},
        "rewards": {"experience": 1000, "gachaTickets": 10},
    },
    {
        "id": "rising_thinker",
        "name": "Rising Thinker",
        "description": "Reach level 10.",
        "category": "progression",
        "criteria": {"type": "player_level", "minLevel": 10},
        "rewards": {"experience": 0, "gachaTickets": 5},
    },
    {
        "id": "school_explorer",
        "name": "School Explorer",
        "description": "Finish twenty lessons.",
        "category": "learning",
        "criteria": {"type": "school_lessons", "minCount": 20},
        "rewards": {"experience": 300, "gachaTickets": 2},
    },
    {
        "id": "learning_from_failure",
        "name": "Learning from Failure",
        "description": "Keep going after three failed quizzes.",
        "category": "quiz",
        "criteria": {"type": "learning_from_failure", "minFailures": 3},
        "rewards": {"experience": 150, "gachaTickets": 1},
    },
    {
        "id": "night_owl",
        "name": "Night Owl",
        "description": "Finish a lesson between midnight and 5 a.m.",
        "category": "learning",
        "criteria": {"type": "time_based", "startHour": 0, "endHour": 5},
        "rewards": {"experience": 100, "gachaTickets": 1},
    },
]
