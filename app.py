# app.py: BrightStars rewards API
# - Activity completion pipeline (stars, streaks, badges, levels)
# - Read models for dashboards
# - Rate-limited tutor question proxy

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException

import db, tutor
from engines import activity_completion, badges, levels, stars
from engines.activity_completion import ActivityPersistenceError
from env_validation import get_env_bool
from schemas import (
    ActivityCompletionBody,
    ActivityCompletionResponse,
    BadgeTypeBody,
    ChildBody,
    ChildLevel,
    NotificationReadBody,
    StarList,
    TutorQuestionBody,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        # Validate environment variables first
        from env_validation import validate_environment
        validate_environment()

        db.init()
        if get_env_bool("SEED_BADGES", True):
            added = db.ensure_seed_badges(badges.DEFAULT_BADGES)
            if added:
                logger.info("Seeded %s default badge definitions", added)
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="BrightStars Rewards", version="1.0.0", lifespan=_lifespan)


def _require_child(child_id: str) -> str:
    child_id = (child_id or "").strip()
    if not child_id:
        raise HTTPException(status_code=400, detail="child_id required")
    return child_id


@app.get("/")
def root():
    return {"status": "ok", "service": app.title, "version": app.version}


@app.post("/activity/complete", response_model=ActivityCompletionResponse)
def complete_activity(body: ActivityCompletionBody):
    try:
        result = activity_completion.complete_activity(
            body.child_id,
            body.user_id,
            body.activity_id,
            body.subject,
            body.score,
            body.time_taken,
            body.topic,
            body.difficulty,
        )
    except ActivityPersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return result.to_dict()


@app.get("/stars", response_model=StarList)
def list_stars(child_id: str):
    child_id = _require_child(child_id)
    return {"child_id": child_id, "stars": stars.fetch_stars_for_child(child_id)}


@app.get("/stars/summary")
def stars_summary(child_id: str):
    return stars.summarize_stars(_require_child(child_id))


@app.get("/badges")
def list_earned_badges(child_id: str):
    child_id = _require_child(child_id)
    return {"child_id": child_id, "badges": badges.fetch_earned_badges_for_child(child_id)}


@app.get("/badges/next")
def next_badge(child_id: str):
    child_id = _require_child(child_id)
    return {"child_id": child_id, "next": badges.next_badge_to_unlock(child_id)}


@app.post("/badges/evaluate")
def evaluate_badges(body: ChildBody):
    child_id = _require_child(body.child_id)
    awards = badges.check_and_award_badges(child_id)
    return {
        "child_id": child_id,
        "badges_earned": [award.badge for award in awards],
        "events": [award.event.to_dict() for award in awards],
    }


@app.get("/badge_types")
def list_badge_types():
    return {"badge_types": db.list_badge_types()}


@app.post("/badge_types")
def upsert_badge_type(body: BadgeTypeBody):
    db.upsert_badge_type(
        body.id,
        body.name,
        body.required_achievement,
        body.required_value,
        description=body.description,
        subject=body.subject,
        level=body.level,
        image_url=body.image_url,
    )
    return {"status": "success", "badge_type": db.get_badge_type(body.id)}


@app.get("/level", response_model=ChildLevel)
def child_level(child_id: str):
    child_id = _require_child(child_id)
    row = levels.describe_child_level(child_id)
    if row is None:
        raise HTTPException(status_code=404, detail="no level data for child")
    return row


@app.post("/level/reconcile", response_model=ChildLevel)
def reconcile_level(body: ChildBody):
    child_id = _require_child(body.child_id)
    row = levels.reconcile_child_level(child_id)
    if row is None:
        raise HTTPException(status_code=404, detail="no level data for child")
    return row


@app.get("/notifications")
def list_notifications(child_id: str, unread_only: bool = False, limit: int = 50):
    child_id = _require_child(child_id)
    return {
        "child_id": child_id,
        "notifications": db.list_notifications(child_id, unread_only=unread_only, limit=limit),
    }


@app.post("/notifications/read")
def mark_notification_read(body: NotificationReadBody):
    if not db.mark_notification_read(body.notification_id):
        raise HTTPException(status_code=404, detail="notification not found")
    return {"status": "success", "notification_id": body.notification_id}


@app.post("/tutor/ask")
def ask_tutor(body: TutorQuestionBody):
    return tutor.ask_tutor(body.user_id, body.question, body.subject_id).to_dict()


@app.get("/tutor/messages")
def tutor_messages(user_id: str, limit: Optional[int] = 10):
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id required")
    return {"user_id": user_id, "messages": tutor.fetch_user_messages(user_id, limit=limit or 10)}
