"""Milestones tied to continuous progression counters."""

MILESTONES = [
    {
        "id": "first_lesson",
        "name": "First Steps",
        "counter": "lessons_completed",
        "requiredValue": 1,
        "reward": {"experience": 100, "gachaTickets": 3},
    },
    {
        "id": "philosophy_novice",
        "name": "Philosophy Novice",
        "counter": "lessons_completed",
        "requiredValue": 10,
        "reward": {"experience": 500, "gachaTickets": 5},
    },
    {
        "id": "quiz_master",
        "name": "Quiz Master",
        "counter": "quizzes_completed",
        "requiredValue": 20,
        "reward": {"experience": 1000, "gachaTickets": 10},
    },
    {
        "id": "perfect_thinker",
        "name": "Perfect Thinker",
        "counter": "perfect_scores",
        "requiredValue": 5,
        "reward": {"experience": 2000, "collectible": "socrates_special"},
    },
]
