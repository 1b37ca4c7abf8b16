"""Reward events raised by the gamification engines and their delivery."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import db

logger = logging.getLogger(__name__)

STARS_AWARDED = "stars_awarded"
STREAK_MILESTONE = "streak_milestone"
BADGE_EARNED = "badge_earned"
LEVEL_UP = "level_up"
ERROR = "error"


@dataclass
class GamificationEvent:
    child_id: str
    kind: str
    title: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


Notifier = Callable[[GamificationEvent], None]


def stars_awarded(child_id: str, amount: int, reason: str, subject: str) -> GamificationEvent:
    return GamificationEvent(
        child_id=child_id,
        kind=STARS_AWARDED,
        title="Stars Earned!",
        message=f"You've earned {amount} stars!",
        data={"amount": amount, "reason": reason, "subject": subject},
    )


def streak_milestone(child_id: str, days: int) -> GamificationEvent:
    return GamificationEvent(
        child_id=child_id,
        kind=STREAK_MILESTONE,
        title="Streak Milestone!",
        message=f"Amazing! You've maintained a {days}-day learning streak!",
        data={"days": days},
    )


def badge_earned(child_id: str, badge: Dict[str, Any]) -> GamificationEvent:
    return GamificationEvent(
        child_id=child_id,
        kind=BADGE_EARNED,
        title="New Badge Earned!",
        message=f'Congratulations! You\'ve earned the "{badge.get("name", "unknown")}" badge!',
        data={"badge_id": badge.get("id"), "name": badge.get("name"), "level": badge.get("level")},
    )


def level_up(child_id: str, new_level: int, title: str) -> GamificationEvent:
    return GamificationEvent(
        child_id=child_id,
        kind=LEVEL_UP,
        title="Level Up!",
        message=f"You reached level {new_level}: {title}!",
        data={"new_level": new_level, "title": title},
    )


def step_failed(child_id: str, step: str, detail: str) -> GamificationEvent:
    titles = {
        "stars": "Error awarding stars",
        "streak": "Error updating learning streak",
        "badges": "Error checking achievements",
        "levels": "Error updating level",
    }
    return GamificationEvent(
        child_id=child_id,
        kind=ERROR,
        title=titles.get(step, "Something went wrong"),
        message=detail,
        data={"step": step},
    )


def store_notification(event: GamificationEvent) -> None:
    """Default notifier: keep the event in the child's notification inbox."""
    db.add_notification(event.child_id, event.kind, event.title, event.message, event.data)


def deliver(events: Iterable[GamificationEvent], notify: Optional[Notifier]) -> List[GamificationEvent]:
    """Hand each event to ``notify``; return the events that could not be delivered."""
    undelivered: List[GamificationEvent] = []
    if notify is None:
        return undelivered
    for event in events:
        try:
            notify(event)
        except Exception:
            logger.exception("Failed to deliver %s notification for child %s", event.kind, event.child_id)
            undelivered.append(event)
    return undelivered
