"""
Skincare consistency: streak, last seven days and weekly goal.

Derived on every request from the user's routine history; nothing here is
stored. Given the same history and the same ``today`` the result is always
the same.
"""
import math
from datetime import date
from typing import Optional

from backend import days
from backend.models import ConsistencyView, DayCompletion
from backend.storage import Storage

# History window, and the cap on how far back the streak walk looks
LOOKBACK_DAYS = 30
WEEK_DAYS = 7

# Indexed Sunday-first
WEEKDAY_LABELS = ["S", "M", "T", "W", "T", "F", "S"]


def weekday_label(day: date) -> str:
    return WEEKDAY_LABELS[day.isoweekday() % 7]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def weekly_goal(completed_days: int) -> int:
    return round_half_up(completed_days / WEEK_DAYS * 100)


def current_streak(logged_days: set, today: date) -> int:
    """Count consecutive logged days walking back from ``today``.

    Today may still be unlogged without breaking the streak; the first
    missing day before today ends it.
    """
    streak = 0
    for offset in range(LOOKBACK_DAYS):
        if days.days_ago(today, offset) in logged_days:
            streak += 1
        elif offset > 0:
            break
    return streak


def summarize(logged_days: set, today: date) -> ConsistencyView:
    last_seven_days = []
    for offset in reversed(range(WEEK_DAYS)):
        day = days.days_ago(today, offset)
        last_seven_days.append(DayCompletion(day_label=weekday_label(day), completed=day in logged_days))

    completed_days = sum(1 for d in last_seven_days if d.completed)
    return ConsistencyView(
        completed_days=completed_days,
        weekly_goal=weekly_goal(completed_days),
        streak=current_streak(logged_days, today),
        last_seven_days=last_seven_days,
    )


async def compute_consistency(storage: Storage, user_id: str, today: Optional[date] = None) -> ConsistencyView:
    today = today or days.today()
    since = days.days_ago(today, LOOKBACK_DAYS).isoformat()
    history = await storage.get_history(user_id, since)
    logged_days = {days.to_calendar_day(record.date) for record in history}
    return summarize(logged_days, today)
