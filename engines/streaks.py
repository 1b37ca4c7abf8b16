"""Consecutive-day learning streaks.

Days are compared as UTC calendar dates. ``today`` may be passed explicitly
so callers and tests can pin the day boundary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import db

logger = logging.getLogger(__name__)

STREAK_MILESTONES = frozenset({3, 7, 14, 30})


@dataclass(frozen=True)
class StreakState:
    streak_days: int
    longest_streak: int
    last_activity_date: Optional[date]


@dataclass(frozen=True)
class StreakUpdate:
    state: StreakState
    changed: bool
    milestone: Optional[int] = None


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).date() if value.tzinfo else value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        logger.warning("Ignoring unparseable last_activity_date %r", value)
        return None


def state_from_row(row: Optional[Mapping[str, Any]]) -> Optional[StreakState]:
    if not row:
        return None
    return StreakState(
        streak_days=int(row.get("streak_days") or 0),
        longest_streak=int(row.get("longest_streak") or 0),
        last_activity_date=_parse_date(row.get("last_activity_date")),
    )


def next_streak_state(previous: Optional[StreakState], today: date) -> StreakUpdate:
    """Advance ``previous`` to ``today``.

    Same day is a no-op, the following day extends the streak and any larger
    gap starts again from 1. ``longest_streak`` never decreases.
    """
    if previous is None or previous.last_activity_date is None:
        longest = max(1, previous.longest_streak if previous else 0)
        state = StreakState(streak_days=1, longest_streak=longest, last_activity_date=today)
        return StreakUpdate(state=state, changed=True, milestone=_milestone(1))

    last = previous.last_activity_date
    if last == today:
        return StreakUpdate(state=previous, changed=False)

    if last == today - timedelta(days=1):
        streak = previous.streak_days + 1
    else:
        streak = 1
    longest = max(previous.longest_streak, streak)
    state = StreakState(streak_days=streak, longest_streak=longest, last_activity_date=today)
    return StreakUpdate(state=state, changed=True, milestone=_milestone(streak))


def _milestone(streak_days: int) -> Optional[int]:
    return streak_days if streak_days in STREAK_MILESTONES else None


def update_learning_streak(child_id: str, today: Optional[date] = None) -> StreakUpdate:
    """Read the child's streak, advance it and upsert the aggregate row."""
    today = today or utc_today()
    previous = state_from_row(db.get_child_level(child_id))
    update = next_streak_state(previous, today)
    if not update.changed:
        return update

    state = update.state
    db.upsert_streak(
        child_id,
        state.streak_days,
        state.longest_streak,
        state.last_activity_date.isoformat(),
    )
    if update.milestone:
        logger.info("Child %s reached a %s-day streak", child_id, update.milestone)
    return update
