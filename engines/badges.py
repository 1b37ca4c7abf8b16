"""Badge requirement checks and awarding.

``evaluate_badges`` lets store errors through so activity completion can
report the failed step; ``check_and_award_badges`` is the best-effort entry
point for everything else.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import db
from engines import notifications

logger = logging.getLogger(__name__)

TOTAL_STARS = "total_stars"
ACTIVITIES_COMPLETED = "activities_completed"
STREAK_DAYS = "streak_days"
PERFECT_SCORE = "perfect_score"
SUBJECT_ACTIVITIES = "subject_activities"

ACHIEVEMENT_KINDS = (TOTAL_STARS, ACTIVITIES_COMPLETED, STREAK_DAYS, PERFECT_SCORE, SUBJECT_ACTIVITIES)
SUBJECTS = ("English", "Maths")

DEFAULT_BADGES: List[Dict[str, Any]] = [
    {
        "id": "first-steps",
        "name": "First Steps",
        "description": "Complete your first activity.",
        "subject": "General",
        "level": 1,
        "required_achievement": ACTIVITIES_COMPLETED,
        "required_value": 1,
    },
    {
        "id": "busy-bee",
        "name": "Busy Bee",
        "description": "Complete 10 activities.",
        "subject": "General",
        "level": 2,
        "required_achievement": ACTIVITIES_COMPLETED,
        "required_value": 10,
    },
    {
        "id": "star-collector",
        "name": "Star Collector",
        "description": "Collect 50 stars.",
        "subject": "General",
        "level": 1,
        "required_achievement": TOTAL_STARS,
        "required_value": 50,
    },
    {
        "id": "superstar",
        "name": "Superstar",
        "description": "Collect 200 stars.",
        "subject": "General",
        "level": 3,
        "required_achievement": TOTAL_STARS,
        "required_value": 200,
    },
    {
        "id": "on-a-roll",
        "name": "On a Roll",
        "description": "Learn three days in a row.",
        "subject": "General",
        "level": 1,
        "required_achievement": STREAK_DAYS,
        "required_value": 3,
    },
    {
        "id": "week-warrior",
        "name": "Week Warrior",
        "description": "Learn seven days in a row.",
        "subject": "General",
        "level": 2,
        "required_achievement": STREAK_DAYS,
        "required_value": 7,
    },
    {
        "id": "perfectionist",
        "name": "Perfectionist",
        "description": "Get a perfect score.",
        "subject": "General",
        "level": 2,
        "required_achievement": PERFECT_SCORE,
        "required_value": 1,
    },
    {
        "id": "bookworm",
        "name": "Bookworm",
        "description": "Complete 5 English activities.",
        "subject": "English",
        "level": 1,
        "required_achievement": SUBJECT_ACTIVITIES,
        "required_value": 5,
    },
    {
        "id": "number-ninja",
        "name": "Number Ninja",
        "description": "Complete 5 Maths activities.",
        "subject": "Maths",
        "level": 1,
        "required_achievement": SUBJECT_ACTIVITIES,
        "required_value": 5,
    },
]


@dataclass(frozen=True)
class BadgeStats:
    """What a child has achieved so far, as seen by the requirement checks."""

    total_stars: int
    streak_days: int
    activities_completed: int
    perfect_scores: int
    subject_activities: Mapping[str, int]

    @classmethod
    def collect(cls, child_level: Mapping[str, Any], stars: Sequence[Mapping[str, Any]]) -> "BadgeStats":
        per_subject: Dict[str, int] = {}
        for star in stars:
            subject = star.get("subject")
            per_subject[subject] = per_subject.get(subject, 0) + 1
        return cls(
            total_stars=int(child_level.get("total_stars") or 0),
            streak_days=int(child_level.get("streak_days") or 0),
            activities_completed=len(stars),
            perfect_scores=sum(1 for star in stars if star.get("is_perfect_score")),
            subject_activities=per_subject,
        )


@dataclass(frozen=True)
class BadgeAward:
    badge: Dict[str, Any]
    event: notifications.GamificationEvent


def _subject_progress(stats: BadgeStats, badge: Mapping[str, Any]) -> Optional[int]:
    subject = badge.get("subject")
    if subject not in SUBJECTS:
        return None
    return stats.subject_activities.get(subject, 0)


_PROGRESS: Dict[str, Callable[[BadgeStats, Mapping[str, Any]], Optional[int]]] = {
    TOTAL_STARS: lambda stats, _badge: stats.total_stars,
    ACTIVITIES_COMPLETED: lambda stats, _badge: stats.activities_completed,
    STREAK_DAYS: lambda stats, _badge: stats.streak_days,
    PERFECT_SCORE: lambda stats, _badge: stats.perfect_scores,
    SUBJECT_ACTIVITIES: _subject_progress,
}


def badge_progress(badge: Mapping[str, Any], stats: BadgeStats) -> Optional[int]:
    """Current value of the badge's achievement kind, or None when it cannot apply."""
    handler = _PROGRESS.get(badge.get("required_achievement"))
    if handler is None:
        return None
    return handler(stats, badge)


def requirement_met(badge: Mapping[str, Any], stats: BadgeStats) -> bool:
    progress = badge_progress(badge, stats)
    if progress is None:
        return False
    return progress >= int(badge.get("required_value") or 0)


def evaluate_badges(child_id: str) -> List[BadgeAward]:
    """Award every unearned badge whose requirement the child now meets.

    The earned set is read once up front, so a badge that only becomes
    reachable because of an award in this same pass waits for the next call.
    Store errors propagate; see ``check_and_award_badges``.
    """
    child_level = db.get_child_level(child_id)
    if not child_level:
        return []
    stars = db.list_stars(child_id)
    earned_ids = {entry["badge_id"] for entry in db.list_earned_badges(child_id)}
    definitions = db.list_badge_types()

    stats = BadgeStats.collect(child_level, stars)
    awards: List[BadgeAward] = []
    for badge in definitions:
        if badge["id"] in earned_ids:
            continue
        if not requirement_met(badge, stats):
            continue
        if not db.insert_earned_badge(child_id, badge["id"]):
            continue
        logger.info("Child %s earned badge %s", child_id, badge["id"])
        awards.append(BadgeAward(badge=badge, event=notifications.badge_earned(child_id, badge)))
    return awards


def check_and_award_badges(child_id: str) -> List[BadgeAward]:
    """``evaluate_badges`` that logs and swallows failures."""
    try:
        return evaluate_badges(child_id)
    except Exception:
        logger.exception("Error checking achievements for child %s", child_id)
        return []


def fetch_earned_badges_for_child(child_id: str) -> List[Dict[str, Any]]:
    return db.list_earned_badges(child_id)


def next_badge_to_unlock(child_id: str) -> Optional[Dict[str, Any]]:
    """The unearned badge with the lowest requirement and the child's progress towards it."""
    earned_ids = {entry["badge_id"] for entry in db.list_earned_badges(child_id)}
    unearned = [badge for badge in db.list_badge_types() if badge["id"] not in earned_ids]
    if not unearned:
        return None

    badge = unearned[0]
    child_level = db.get_child_level(child_id) or {}
    stats = BadgeStats.collect(child_level, db.list_stars(child_id))
    return {
        "badge": badge,
        "progress": badge_progress(badge, stats) or 0,
        "required_value": badge["required_value"],
    }
