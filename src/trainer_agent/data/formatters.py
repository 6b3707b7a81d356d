"""
Concise text formatters for user data injected into agent context.

Output is kept compact for token efficiency and deterministic for a given
input, since formatted text ends up inside cached prompt prefixes.
"""

from datetime import date, datetime
from typing import Any


def _parse_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        return None


def _age(dob: Any, today: date | None = None) -> int | None:
    born = _parse_date(dob)
    if born is None:
        return None
    today = today or date.today()
    return today.year - born.year - ((today.month, today.day) < (born.month, born.day))


def _number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_body_stats(profile: dict[str, Any] | None, today: date | None = None) -> str:
    """Format demographics and latest body measurements."""
    if not profile:
        return "No profile data recorded."

    parts = []
    if profile.get("sex"):
        parts.append(f"Sex: {profile['sex']}")
    age = _age(profile.get("dob"), today)
    if age is not None:
        parts.append(f"Age: {age}")
    if profile.get("height_cm"):
        parts.append(f"Height: {_number(profile['height_cm'])}cm")
    if profile.get("weight_kg"):
        parts.append(f"Weight: {_number(profile['weight_kg'])}kg")
    if profile.get("body_fat_pct"):
        parts.append(f"Body Fat: {_number(profile['body_fat_pct'])}%")

    return " | ".join(parts) if parts else "No profile data recorded."


def format_user_settings(settings: dict[str, Any] | None) -> str:
    if not settings:
        return "Default settings in use."

    parts = []
    if settings.get("weight_unit"):
        parts.append(f"Weight unit: {settings['weight_unit']}")
    if settings.get("distance_unit"):
        parts.append(f"Distance unit: {settings['distance_unit']}")
    if settings.get("preferred_workout_duration"):
        parts.append(f"Duration: {settings['preferred_workout_duration']}min")
    if settings.get("fitness_level"):
        parts.append(f"Level: {settings['fitness_level']}")

    return " | ".join(parts) if parts else "Default settings in use."


def exercise_volume(exercise: dict[str, Any]) -> str:
    if exercise.get("sets") and exercise.get("reps"):
        return f"{exercise['sets']}x{exercise['reps']}"
    if exercise.get("sets") and exercise.get("hold_sec"):
        return f"{exercise['sets']}x{exercise['hold_sec']}s"
    if exercise.get("duration_min"):
        return f"{_number(exercise['duration_min'])}min"
    if exercise.get("rounds"):
        return f"{exercise['rounds']} rounds"
    return "done"


def format_workout_history(workouts: list[dict[str, Any]] | None) -> str:
    """Format recent workouts, one line per workout."""
    if not workouts:
        return "No workout history available."

    lines = []
    for workout in workouts:
        completed = _parse_date(workout.get("completed_at"))
        label = completed.isoformat() if completed else "unknown date"
        exercises = workout.get("exercises") or []
        summary = ", ".join(
            f"{e.get('name', 'exercise')}({exercise_volume(e)})" for e in exercises
        ) or "No exercises logged"
        lines.append(f"{label}: {summary}")
    return "\n".join(lines)


def _format_equipment(item: Any) -> str:
    if isinstance(item, str):
        return item
    line = item.get("name", "equipment")
    if item.get("type"):
        line += f" ({item['type']})"
    if item.get("type") == "free_weights" and item.get("weights"):
        unit = item.get("unit", "kg")
        line += f": {', '.join(_number(w) for w in item['weights'])}{unit}"
    return line


def format_all_locations(locations: list[dict[str, Any]] | None) -> str:
    """Format every location, current one marked with a star."""
    if not locations:
        return "No locations configured."

    blocks = []
    for loc in locations:
        marker = "★ " if loc.get("current") else "  "
        text = f"{marker}{loc.get('name', 'Unnamed')} [id:{loc.get('id', '?')}]"
        if loc.get("description"):
            text += f"\n    {loc['description']}"
        equipment = loc.get("equipment") or []
        if equipment:
            text += "\n    Equipment:"
            for item in equipment:
                text += f"\n      - {_format_equipment(item)}"
        else:
            text += "\n    Equipment: none"
        blocks.append(text)
    return "\n\n".join(blocks)


def format_goals(goals: dict[str, Any] | None) -> str:
    if not goals:
        return "No goals set."

    lines = []
    for goal in goals.get("category_goals") or []:
        description = f" - {goal['description']}" if goal.get("description") else ""
        lines.append(f"{goal['category']}{description}: weight {_number(goal.get('weight', 0))}")
    for goal in goals.get("muscle_goals") or []:
        lines.append(f"{goal['muscle']}: weight {_number(goal.get('weight', 0))}")
    return "\n".join(lines) if lines else "No goals set."


def format_preferences(preferences: dict[str, Any] | None) -> str:
    if not preferences:
        return "No active preferences."

    lines = []
    temporary = preferences.get("temporary") or []
    permanent = preferences.get("permanent") or []
    if temporary:
        lines.append("Temporary preferences:")
        for pref in temporary:
            line = f"- {pref['description']}"
            if pref.get("expires_at"):
                expires = _parse_date(pref["expires_at"])
                line += f" (expires: {expires.isoformat() if expires else pref['expires_at']})"
            if pref.get("one_time"):
                line += " (one-time)"
            lines.append(line)
    if permanent:
        lines.append("Permanent preferences:")
        lines.extend(f"- {pref['description']}" for pref in permanent)
    return "\n".join(lines) if lines else "No active preferences."


# Debt within this band counts as on target
DISTRIBUTION_TOLERANCE = 0.05


def _pct(value: Any) -> str:
    return f"{float(value) * 100:.0f}%"


def _distribution_section(title: str, entries: dict[str, dict[str, Any]]) -> list[str]:
    under = sorted(
        ((name, d) for name, d in entries.items() if d.get("debt", 0) > DISTRIBUTION_TOLERANCE),
        key=lambda item: -item[1]["debt"],
    )
    over = sorted(
        ((name, d) for name, d in entries.items() if d.get("debt", 0) < -DISTRIBUTION_TOLERANCE),
        key=lambda item: item[1]["debt"],
    )
    on_target = [(name, d) for name, d in entries.items() if abs(d.get("debt", 0)) <= DISTRIBUTION_TOLERANCE]

    lines = [f"{title}:"]
    if under:
        lines.append("  Under-represented (need more):")
        lines.extend(
            f"  - {name}: target {_pct(d.get('target', 0))}, actual {_pct(d.get('actual', 0))}, needs +{_pct(d['debt'])}"
            for name, d in under
        )
    if over:
        lines.append("  Over-represented (reduce):")
        lines.extend(
            f"  - {name}: target {_pct(d.get('target', 0))}, actual {_pct(d.get('actual', 0))}, over by {_pct(-d['debt'])}"
            for name, d in over
        )
    if on_target:
        lines.append("  On target:")
        lines.extend(
            f"  - {name}: target {_pct(d.get('target', 0))}, actual {_pct(d.get('actual', 0))} ✓"
            for name, d in on_target
        )
    return lines


def format_exercise_distribution(distribution: dict[str, Any] | None) -> str:
    """Format goal distribution tracking: how far each category and muscle is from its target share."""
    if not distribution or not distribution.get("total_exercises"):
        return "No distribution data tracked yet."

    since = _parse_date(distribution.get("tracking_since"))
    lines = [
        f"Tracking since {since.isoformat() if since else 'unknown'}, "
        f"{distribution['total_exercises']} exercises tracked"
    ]
    if distribution.get("categories"):
        lines.extend(_distribution_section("Categories", distribution["categories"]))
    if distribution.get("muscles"):
        lines.extend(_distribution_section("Muscles", distribution["muscles"]))
    return "\n".join(lines)


def format_current_workout(workout: dict[str, Any] | None) -> str:
    """Format a client-provided in-progress workout."""
    if not workout or not workout.get("exercises"):
        return "No active workout session."

    exercises = workout["exercises"]
    total = len(exercises)
    index = workout.get("current_index") or 0
    if not 0 <= index < total:
        index = 0
    current = exercises[index]

    lines = [
        f"Active workout: {total} exercises, {workout.get('total_completed') or 0} completed",
        f"Currently viewing: {current.get('name', 'exercise')} ({index + 1}/{total})",
        "",
        "Exercises:",
    ]
    for i, exercise in enumerate(exercises):
        marker = "→ " if i == index else "  "
        status = " ✓" if exercise.get("completed") else ""
        lines.append(f"{marker}{i + 1}. {exercise.get('name', 'exercise')} ({exercise_volume(exercise)}){status}")
    return "\n".join(lines)


def format_profile_snapshot(snapshot: dict[str, Any], today: date | None = None) -> str:
    """Serialize slow-changing user data into the cached ``<user_data>`` block."""
    sections = [
        ("unit_preferences", format_user_settings(snapshot.get("settings"))),
        ("body_stats", format_body_stats(snapshot.get("profile"), today)),
        ("goals", format_goals(snapshot.get("goals"))),
        ("active_preferences", format_preferences(snapshot.get("preferences"))),
    ]
    current = next((loc for loc in snapshot.get("locations") or [] if loc.get("current")), None)
    if current is not None:
        sections.insert(3, ("current_location", format_all_locations([current]).strip()))

    body = "\n\n".join(f"<{tag}>\n{text}\n</{tag}>" for tag, text in sections)
    return f"<user_data>\n{body}\n</user_data>"
