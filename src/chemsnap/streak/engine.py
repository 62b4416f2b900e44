"""Daily activity streak computation. Pure functions, no store access."""

from datetime import date, datetime, tzinfo

from chemsnap.models.user_profile import Role, StreakUpdate


def normalize_day(value: date | datetime | str, tz: tzinfo | None = None) -> date:
    """Reduce a timestamp to its calendar day.

    Aware datetimes are converted to ``tz`` (server local time when ``tz`` is
    None) before the date is taken; naive datetimes are taken as already local.
    ISO strings are accepted since the store returns dates that way.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value) if "T" in value else date.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(tz)
        return value.date()
    return value


def compute_streak_update(
    role: Role,
    current_streak: int,
    last_activity_date: date | datetime | str | None,
    today: date | datetime,
    tz: tzinfo | None = None,
) -> StreakUpdate | None:
    """Decide the new streak state for one tracked activity.

    Args:
        role: Role of the acting user. Only students accrue streaks.
        current_streak: Persisted streak count.
        last_activity_date: Last day activity was recorded, or None.
        today: Current date or timestamp.
        tz: Zone used to derive calendar days from aware timestamps.

    Returns:
        The update to persist, or None when nothing should be written.
    """
    if role != Role.STUDENT:
        return None

    day = normalize_day(today, tz)
    if last_activity_date is None:
        return StreakUpdate(new_streak=1, new_last_activity_date=day)

    diff_days = abs((day - normalize_day(last_activity_date, tz)).days)
    if diff_days == 0:
        return None
    if diff_days == 1:
        return StreakUpdate(new_streak=current_streak + 1, new_last_activity_date=day)
    # Gap in activity
    return StreakUpdate(new_streak=1, new_last_activity_date=day)
