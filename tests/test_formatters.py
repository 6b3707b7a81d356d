"""
Tests for user data formatters.
"""

from datetime import date

from trainer_agent.data.formatters import (
    exercise_volume,
    format_all_locations,
    format_body_stats,
    format_current_workout,
    format_exercise_distribution,
    format_goals,
    format_preferences,
    format_profile_snapshot,
    format_user_settings,
    format_workout_history,
)

TODAY = date(2026, 10, 18)


def test_body_stats():
    """Test age is computed from date of birth."""
    text = format_body_stats({"sex": "female", "dob": "1990-10-19", "height_cm": 168.0, "weight_kg": 62.5}, TODAY)

    assert text == "Sex: female | Age: 35 | Height: 168cm | Weight: 62.5kg"
    assert format_body_stats(None) == "No profile data recorded."


def test_user_settings():
    """Test unit preferences."""
    assert format_user_settings({"weight_unit": "lb", "preferred_workout_duration": 30}) == (
        "Weight unit: lb | Duration: 30min"
    )
    assert format_user_settings({}) == "Default settings in use."


def test_exercise_volume():
    """Test volume strings for each exercise shape."""
    assert exercise_volume({"sets": 3, "reps": 10}) == "3x10"
    assert exercise_volume({"sets": 3, "hold_sec": 45}) == "3x45s"
    assert exercise_volume({"duration_min": 20.0}) == "20min"
    assert exercise_volume({"rounds": 8}) == "8 rounds"
    assert exercise_volume({}) == "done"


def test_workout_history():
    """Test one line per workout."""
    text = format_workout_history([
        {"completed_at": "2026-10-01T08:00:00+00:00", "exercises": [{"name": "Squat", "sets": 3, "reps": 8}]},
        {"exercises": []},
    ])

    assert text.splitlines() == ["2026-10-01: Squat(3x8)", "unknown date: No exercises logged"]
    assert format_workout_history([]) == "No workout history available."


def test_locations():
    """Test the current location is starred and equipment listed."""
    text = format_all_locations([
        {
            "id": "loc-1",
            "name": "Home",
            "current": True,
            "equipment": [
                "yoga mat",
                {"name": "Dumbbells", "type": "free_weights", "weights": [5.0, 10.0], "unit": "kg"},
            ],
        },
        {"id": "loc-2", "name": "Gym"},
    ])

    assert "★ Home [id:loc-1]" in text
    assert "- Dumbbells (free_weights): 5, 10kg" in text
    assert "  Gym [id:loc-2]\n    Equipment: none" in text


def test_goals_and_preferences():
    """Test goals and preference sections."""
    goals = format_goals({
        "category_goals": [{"category": "Strength", "description": "Get stronger", "weight": 0.6}],
        "muscle_goals": [{"muscle": "Glutes", "weight": 0.3}],
    })
    assert goals == "Strength - Get stronger: weight 0.6\nGlutes: weight 0.3"

    prefs = format_preferences({
        "temporary": [{"description": "Sore knee", "expires_at": "2026-10-25T00:00:00", "one_time": True}],
        "permanent": [{"description": "No burpees"}],
    })
    assert prefs.splitlines() == [
        "Temporary preferences:",
        "- Sore knee (expires: 2026-10-25) (one-time)",
        "Permanent preferences:",
        "- No burpees",
    ]


def test_current_workout():
    """Test the in-progress workout marks the current exercise."""
    text = format_current_workout({
        "exercises": [{"name": "Squat", "sets": 3, "reps": 8, "completed": True}, {"name": "Plank", "sets": 3, "hold_sec": 30}],
        "current_index": 5,
    })

    assert "Currently viewing: Squat (1/2)" in text
    assert "→ 1. Squat (3x8) ✓" in text
    assert format_current_workout(None) == "No active workout session."


def test_profile_snapshot_is_deterministic():
    """Test the snapshot has stable sections including the current location."""
    snapshot = {
        "settings": {"weight_unit": "kg"},
        "profile": {"dob": "1990-01-01"},
        "goals": None,
        "preferences": None,
        "locations": [{"id": "loc-1", "name": "Home", "current": True}],
    }

    text = format_profile_snapshot(snapshot, TODAY)

    assert text == format_profile_snapshot(snapshot, TODAY)
    assert text.startswith("<user_data>\n<unit_preferences>")
    assert text.index("<current_location>") < text.index("<active_preferences>")
    assert "Age: 36" in text


def test_exercise_distribution():
    """Test categories and muscles are grouped by how far they are from target."""
    text = format_exercise_distribution({
        "tracking_since": "2026-09-01T00:00:00+00:00",
        "total_exercises": 40,
        "categories": {
            "Cardio": {"target": 0.2, "actual": 0.22, "debt": -0.02},
            "Strength": {"target": 0.5, "actual": 0.2, "debt": 0.3},
            "Mobility": {"target": 0.3, "actual": 0.58, "debt": -0.28},
        },
        "muscles": {"Glutes": {"target": 0.3, "actual": 0.1, "debt": 0.2}},
    })

    assert text.splitlines() == [
        "Tracking since 2026-09-01, 40 exercises tracked",
        "Categories:",
        "  Under-represented (need more):",
        "  - Strength: target 50%, actual 20%, needs +30%",
        "  Over-represented (reduce):",
        "  - Mobility: target 30%, actual 58%, over by 28%",
        "  On target:",
        "  - Cardio: target 20%, actual 22% ✓",
        "Muscles:",
        "  Under-represented (need more):",
        "  - Glutes: target 30%, actual 10%, needs +20%",
    ]
    assert format_exercise_distribution({"total_exercises": 0}) == "No distribution data tracked yet."
