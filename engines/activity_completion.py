"""Reward pipeline run once per completed learning activity."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

import db
from engines import badges, levels, notifications, stars, streaks

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard")


class ActivityPersistenceError(RuntimeError):
    """Raised when the raw activity result could not be stored."""


def convert_difficulty_to_string(difficulty: int) -> str:
    if difficulty == 1:
        return "easy"
    if difficulty == 2:
        return "medium"
    return "hard"


@dataclass
class ActivityCompletionResult:
    activity_result_id: int
    stars: Optional[stars.StarAward] = None
    streak: Optional[streaks.StreakUpdate] = None
    badges_earned: List[Dict[str, Any]] = field(default_factory=list)
    events: List[notifications.GamificationEvent] = field(default_factory=list)
    failed_steps: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        streak_state = self.streak.state if self.streak else None
        return {
            "activity_result_id": self.activity_result_id,
            "stars": (
                {
                    "amount": self.stars.amount,
                    "reason": self.stars.reason,
                    "is_perfect_score": self.stars.is_perfect_score,
                }
                if self.stars
                else None
            ),
            "streak": (
                {
                    "streak_days": streak_state.streak_days,
                    "longest_streak": streak_state.longest_streak,
                    "last_activity_date": (
                        streak_state.last_activity_date.isoformat()
                        if streak_state.last_activity_date
                        else None
                    ),
                    "milestone": self.streak.milestone,
                }
                if streak_state
                else None
            ),
            "badges_earned": self.badges_earned,
            "events": [event.to_dict() for event in self.events],
            "failed_steps": list(self.failed_steps),
        }


def complete_activity(
    child_id: str,
    user_id: str,
    activity_id: str,
    subject: str,
    score: float,
    time_taken: int,
    topic: str,
    difficulty: str,
    *,
    today: Optional[date] = None,
    notify: Optional[notifications.Notifier] = notifications.store_notification,
) -> ActivityCompletionResult:
    """Store the activity result, then award stars, update the streak and check badges.

    Only the first step is fatal. The reward steps are independent: each one
    logs its own failure and the pipeline carries on, leaving earlier writes
    committed.
    """
    try:
        result_id = db.insert_activity_result(
            child_id, user_id, activity_id, subject, score, time_taken, topic, difficulty
        )
    except sqlite3.Error as exc:
        logger.error("Error saving activity result for child %s: %s", child_id, exc)
        raise ActivityPersistenceError(f"Error saving activity results: {exc}") from exc

    result = ActivityCompletionResult(activity_result_id=result_id)

    try:
        result.stars = stars.award_stars(child_id, activity_id, subject, score)
        result.events.append(
            notifications.stars_awarded(child_id, result.stars.amount, result.stars.reason, subject)
        )
    except Exception as exc:
        logger.exception("Error awarding stars to child %s", child_id)
        result.failed_steps.append("stars")
        result.events.append(notifications.step_failed(child_id, "stars", str(exc)))

    if result.stars is not None:
        try:
            level_event = levels.refresh_child_level(child_id)
            if level_event:
                result.events.append(level_event)
        except Exception as exc:
            logger.exception("Error updating level for child %s", child_id)
            result.failed_steps.append("levels")
            result.events.append(notifications.step_failed(child_id, "levels", str(exc)))

    try:
        result.streak = streaks.update_learning_streak(child_id, today=today)
        if result.streak.milestone:
            result.events.append(notifications.streak_milestone(child_id, result.streak.milestone))
    except Exception as exc:
        logger.exception("Error updating learning streak for child %s", child_id)
        result.failed_steps.append("streak")
        result.events.append(notifications.step_failed(child_id, "streak", str(exc)))

    try:
        awards = badges.evaluate_badges(child_id)
        result.badges_earned = [award.badge for award in awards]
        result.events.extend(award.event for award in awards)
    except Exception as exc:
        logger.exception("Error checking achievements for child %s", child_id)
        result.failed_steps.append("badges")
        result.events.append(notifications.step_failed(child_id, "badges", str(exc)))

    undelivered = notifications.deliver(result.events, notify)
    if undelivered:
        logger.warning(
            "%s of %s reward notifications for child %s were not delivered",
            len(undelivered),
            len(result.events),
            child_id,
        )
    return result
