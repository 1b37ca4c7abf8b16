"""Overall and per-subject levels derived from a child's stars."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import db
from engines import notifications

logger = logging.getLogger(__name__)

# (minimum total stars, title); level n is LEVELS[n - 1].
LEVELS: Tuple[Tuple[int, str], ...] = (
    (0, "Beginner"),
    (25, "Explorer"),
    (60, "Adventurer"),
    (120, "Star Seeker"),
    (200, "Champion"),
    (320, "Master Learner"),
)

SUBJECT_STARS_PER_LEVEL = 20


@dataclass(frozen=True)
class LevelInfo:
    level: int
    title: str
    stars_into_level: int
    stars_to_next: int
    progress_percent: int


def level_for_stars(total_stars: int) -> LevelInfo:
    total_stars = max(0, int(total_stars))
    index = 0
    for position, (minimum, _) in enumerate(LEVELS):
        if total_stars >= minimum:
            index = position
        else:
            break

    floor, title = LEVELS[index]
    if index + 1 >= len(LEVELS):
        return LevelInfo(
            level=index + 1,
            title=title,
            stars_into_level=total_stars - floor,
            stars_to_next=0,
            progress_percent=100,
        )

    ceiling = LEVELS[index + 1][0]
    span = ceiling - floor
    into = total_stars - floor
    return LevelInfo(
        level=index + 1,
        title=title,
        stars_into_level=into,
        stars_to_next=ceiling - total_stars,
        progress_percent=int(into * 100 / span),
    )


def subject_level(subject_stars: int) -> int:
    return 1 + max(0, int(subject_stars)) // SUBJECT_STARS_PER_LEVEL


def refresh_child_level(child_id: str) -> Optional[notifications.GamificationEvent]:
    """Recompute level fields from the star ledger.

    Returns a ``level_up`` event when the overall level went up.
    """
    previous = db.get_child_level(child_id)
    by_subject = db.star_totals_by_subject(child_id)
    total = sum(entry["amount"] for entry in by_subject.values())
    info = level_for_stars(total)
    english = subject_level(by_subject.get("English", {}).get("amount", 0))
    maths = subject_level(by_subject.get("Maths", {}).get("amount", 0))

    db.update_level_fields(child_id, info.level, info.title, english, maths)

    previous_level = int(previous["current_level"]) if previous else 1
    if info.level > previous_level:
        logger.info("Child %s levelled up to %s (%s)", child_id, info.level, info.title)
        return notifications.level_up(child_id, info.level, info.title)
    return None


def reconcile_child_level(child_id: str) -> Optional[Dict[str, Any]]:
    """Rebuild the aggregate row from the star and badge ledgers.

    Returns None for a child with neither an aggregate row nor any stars.
    """
    if db.get_child_level(child_id) is None and not db.list_stars(child_id, limit=1):
        return None
    db.refresh_child_totals(child_id)
    refresh_child_level(child_id)
    return describe_child_level(child_id)


def describe_child_level(child_id: str) -> Optional[Dict[str, Any]]:
    """The aggregate row plus progress towards the next level."""
    row = db.get_child_level(child_id)
    if row is None:
        return None
    info = level_for_stars(row["total_stars"])
    row["stars_to_next_level"] = info.stars_to_next
    row["level_progress_percent"] = info.progress_percent
    return row
