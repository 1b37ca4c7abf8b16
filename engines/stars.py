"""Star awards for completed activities."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List

import db

logger = logging.getLogger(__name__)

PERFECT_SCORE = 100
PERFECT_SCORE_REASON = "perfect score"

# (minimum score, stars, reason), highest bucket first.
STAR_THRESHOLDS = (
    (90, 5, "Excellent score"),
    (75, 4, "Great score"),
    (60, 3, "Good score"),
    (40, 2, "Decent effort"),
)
COMPLETION_STARS = 1
COMPLETION_REASON = "Completion"


class StarAwardError(RuntimeError):
    """Raised when a star record could not be persisted."""


@dataclass(frozen=True)
class StarAward:
    amount: int
    reason: str
    is_perfect_score: bool = False


def stars_for_score(score: float) -> StarAward:
    """Map an activity score to a star amount and reason.

    Scores are not clamped: anything above 100 lands in the top bucket and
    anything negative in the completion bucket.
    """
    if score == PERFECT_SCORE:
        return StarAward(amount=5, reason=PERFECT_SCORE_REASON, is_perfect_score=True)
    for minimum, amount, reason in STAR_THRESHOLDS:
        if score >= minimum:
            return StarAward(amount=amount, reason=reason)
    return StarAward(amount=COMPLETION_STARS, reason=COMPLETION_REASON)


def award_stars(child_id: str, activity_id: str, subject: str, score: float) -> StarAward:
    """Persist the star record earned by ``score``.

    A single insert is performed together with the aggregate refresh, so a
    failure leaves neither behind.
    """
    award = stars_for_score(score)
    try:
        db.insert_star(
            child_id,
            activity_id,
            award.amount,
            subject,
            award.reason,
            is_perfect_score=award.is_perfect_score,
        )
    except sqlite3.Error as exc:
        raise StarAwardError(f"Could not award stars to {child_id}: {exc}") from exc
    logger.info("Awarded %s stars to child %s (%s)", award.amount, child_id, award.reason)
    return award


def fetch_stars_for_child(child_id: str) -> List[Dict[str, Any]]:
    return db.list_stars(child_id)


def summarize_stars(child_id: str, recent: int = 5) -> Dict[str, Any]:
    """Totals per subject plus the most recent star records."""
    by_subject = db.star_totals_by_subject(child_id)
    return {
        "child_id": child_id,
        "total": sum(entry["amount"] for entry in by_subject.values()),
        "by_subject": {subject: entry["amount"] for subject, entry in by_subject.items()},
        "recent": db.list_stars(child_id, limit=recent),
    }
