"""Point values, daily limits and message templates per event type.

Fixed-value types map straight to points. Types listed in
``METADATA_POINT_KEYS`` read an override from event metadata, falling back
to ``DYNAMIC_DEFAULT_POINTS``.
"""

from __future__ import annotations

FIXED_POINTS: dict[str, int] = {
    "login_success": 2,
    "diet_started": 5,
    "exercise_started": 3,
    "calculator_saved": 10,
    "rating_submitted": 20,
    "comment_created": 2,
    "comment_liked": 0,
    "follow_accepted": 1,
    "highfive_sent": 1,
    "water_added": 1,
    "steps_logged": 1,
    "meal_photo_uploaded": 15,
    "circle_joined": 100,
    # Audit-only
    "profile_weight_updated": 0,
    "profile_goal_updated": 0,
    "water_goal_reached": 0,
    "nutrition_goal_reached": 0,
    "mindful_exercise_completed": 0,
}

BLOG_STICKY_POINTS = 50
BLOG_NORMAL_POINTS = 10

# event_type -> metadata keys checked in order
METADATA_POINT_KEYS: dict[str, tuple[str, ...]] = {
    "diet_completed": ("diet_points", "points"),
    "exercise_completed": ("exercise_points", "points"),
}
DYNAMIC_DEFAULT_POINTS = 10

# Rewards whose value is decided by the emitting job
REWARD_EVENT_TYPES: frozenset[str] = frozenset({
    "comment_like_milestone_rewarded",
    "level_position_rewarded",
    "streak_milestone_rewarded",
})

DAILY_LIMITS: dict[str, int] = {
    "login_success": 1,
    "blog_points_claimed": 5,
    "meal_photo_uploaded": 5,
    "water_added": 15,
}

# Completion signals. Recorded for audit and badge rules, never matched by quests.
TERMINAL_EVENT_TYPES: frozenset[str] = frozenset({
    "task_completed",
    "daily_task_completed",
    "weekly_task_completed",
    "monthly_task_completed",
    "circle_task_completed",
    "badge_earned",
})

MESSAGES: dict[str, str] = {
    "login_success": "+{points} points! Welcome back!",
    "diet_started": "+{points} points! You started a diet plan.",
    "diet_completed": "+{points} points! You completed your diet plan!",
    "exercise_started": "+{points} points! You started an exercise.",
    "exercise_completed": "+{points} points! You completed the exercise!",
    "calculator_saved": "+{points} points! Calculation saved.",
    "rating_submitted": "+{points} points! Thanks for your review.",
    "comment_created": "+{points} points! You left a comment.",
    "follow_accepted": "+{points} points! New connection.",
    "highfive_sent": "+{points} points! High five!",
    "water_added": "+{points} points! Stay hydrated.",
    "steps_logged": "+{points} points! Steps logged.",
    "meal_photo_uploaded": "+{points} points! Meal photo added.",
    "circle_joined": "+{points} points! You joined a circle!",
    "circle_created": "+{points} points! You created a circle!",
    "comment_like_milestone_rewarded": "+{points} points! Your comment reached {milestone} likes!",
    "level_position_rewarded": "+{points} points! You finished #{position} in your league!",
    "streak_milestone_rewarded": "+{points} points! {streak} days in a row!",
}
DEFAULT_MESSAGE = "+{points} points!"
BLOG_MESSAGE = "+{points} points! ({kind})"
