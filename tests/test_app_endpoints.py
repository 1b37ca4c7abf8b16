import asyncio
import json
import unittest
from unittest.mock import patch

import pytest
from fastapi import HTTPException

import app
import db
from schemas import ActivityCompletionBody, ChildBody, NotificationReadBody


def _request(method: str, path: str, payload: dict | None = None, query: str = "") -> tuple[int, dict]:
    async def _call():
        body = json.dumps(payload).encode("utf-8") if payload is not None else b""
        received_once = False

        async def receive():
            nonlocal received_once
            if not received_once:
                received_once = True
                return {"type": "http.request", "body": body, "more_body": False}
            return {"type": "http.disconnect"}

        messages = []

        async def send(message):
            messages.append(message)

        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "scheme": "http",
            "query_string": query.encode(),
            "headers": [
                (b"host", b"testserver"),
                (b"content-type", b"application/json"),
                (b"content-length", str(len(body)).encode()),
            ],
            "client": ("testclient", 12345),
            "server": ("testserver", 80),
            "state": {},
        }

        await app.app(scope, receive, send)
        return messages

    messages = asyncio.run(_call())
    status = 500
    body_bytes = b""

    for message in messages:
        if message["type"] == "http.response.start":
            status = message["status"]
        elif message["type"] == "http.response.body":
            body_bytes += message.get("body", b"")

    data = json.loads(body_bytes.decode("utf-8") or "{}")
    return status, data


def _completion(**overrides):
    payload = {
        "child_id": "child-1",
        "user_id": "parent-1",
        "activity_id": "act-1",
        "subject": "Maths",
        "score": 92,
        "time_taken": 60,
        "topic": "times tables",
        "difficulty": "easy",
    }
    payload.update(overrides)
    return payload


class ActivityValidationTests(unittest.TestCase):
    def test_score_above_hundred_is_rejected(self):
        with patch("app.activity_completion.complete_activity") as complete:
            status, payload = _request("POST", "/activity/complete", _completion(score=150))

        self.assertEqual(status, 422)
        self.assertEqual(payload["detail"][0]["loc"][-1], "score")
        complete.assert_not_called()

    def test_unknown_subject_is_rejected(self):
        status, _ = _request("POST", "/activity/complete", _completion(subject="History"))
        self.assertEqual(status, 422)

    def test_numeric_difficulty_is_normalised(self):
        body = ActivityCompletionBody(**_completion(difficulty=1))
        self.assertEqual(body.difficulty, "easy")
        body = ActivityCompletionBody(**_completion(difficulty=9))
        self.assertEqual(body.difficulty, "hard")

    def test_numeric_difficulty_uses_engine_mapping(self):
        with patch("schemas.convert_difficulty_to_string", return_value="medium") as convert:
            body = ActivityCompletionBody(**_completion(difficulty=3))
        convert.assert_called_once_with(3)
        self.assertEqual(body.difficulty, "medium")


def test_complete_activity_over_http(seeded_badges):
    status, payload = _request("POST", "/activity/complete", _completion())

    assert status == 200
    assert payload["stars"]["amount"] == 5
    assert payload["streak"]["streak_days"] == 1
    assert [badge["id"] for badge in payload["badges_earned"]] == ["first-steps"]
    assert payload["failed_steps"] == []

    status, level = _request("GET", "/level", query="child_id=child-1")
    assert status == 200
    assert level["total_stars"] == 5
    assert level["stars_to_next_level"] == 20

    status, inbox = _request("GET", "/notifications", query="child_id=child-1&unread_only=true")
    assert status == 200
    assert len(inbox["notifications"]) == len(payload["events"])


def test_persistence_failure_maps_to_500(temp_db, monkeypatch):
    from engines.activity_completion import ActivityPersistenceError

    def _broken(*args, **kwargs):
        raise ActivityPersistenceError("Error saving activity results: disk full")

    monkeypatch.setattr(app.activity_completion, "complete_activity", _broken)

    with pytest.raises(HTTPException) as exc:
        app.complete_activity(ActivityCompletionBody(**_completion()))
    assert exc.value.status_code == 500


def test_level_missing_returns_404(temp_db):
    with pytest.raises(HTTPException) as exc:
        app.child_level("nobody")
    assert exc.value.status_code == 404

    with pytest.raises(HTTPException) as exc:
        app.reconcile_level(ChildBody(child_id="nobody"))
    assert exc.value.status_code == 404


def test_blank_child_id_is_rejected(temp_db):
    with pytest.raises(HTTPException) as exc:
        app.list_stars("   ")
    assert exc.value.status_code == 400


def test_star_and_badge_read_models(seeded_badges):
    app.complete_activity(ActivityCompletionBody(**_completion(score=100)))

    stars = app.list_stars("child-1")
    assert stars["stars"][0]["reason"] == "perfect score"

    summary = app.stars_summary("child-1")
    assert summary["by_subject"] == {"Maths": 5}

    earned = app.list_earned_badges("child-1")
    assert {entry["badge_id"] for entry in earned["badges"]} == {"first-steps", "perfectionist"}

    upcoming = app.next_badge("child-1")
    assert upcoming["next"]["badge"]["id"] == "on-a-roll"

    # Nothing new to award on a manual re-check
    assert app.evaluate_badges(ChildBody(child_id="child-1"))["badges_earned"] == []


def test_badge_type_upsert_and_list(temp_db):
    status, payload = _request(
        "POST",
        "/badge_types",
        {
            "id": "speed-reader",
            "name": "Speed Reader",
            "subject": "English",
            "required_achievement": "subject_activities",
            "required_value": 3,
        },
    )
    assert status == 200
    assert payload["badge_type"]["subject"] == "English"

    status, _ = _request(
        "POST",
        "/badge_types",
        {"id": "bad", "name": "Bad", "required_achievement": "cheating", "required_value": 1},
    )
    assert status == 422

    listed = app.list_badge_types()["badge_types"]
    assert [badge["id"] for badge in listed] == ["speed-reader"]


def test_mark_notification_read(temp_db):
    note_id = db.add_notification("child-1", "level_up", "Level Up!", "You reached level 2: Explorer!")
    assert app.mark_notification_read(NotificationReadBody(notification_id=note_id))["status"] == "success"
    assert app.list_notifications("child-1", unread_only=True)["notifications"] == []

    with pytest.raises(HTTPException) as exc:
        app.mark_notification_read(NotificationReadBody(notification_id=note_id + 100))
    assert exc.value.status_code == 404


def test_reconcile_endpoint(temp_db):
    db.insert_star("child-1", "act-1", 4, "English", "Great score")
    db._exec("UPDATE child_levels SET total_stars = 0 WHERE child_id = ?", ("child-1",))

    status, payload = _request("POST", "/level/reconcile", {"child_id": "child-1"})
    assert status == 200
    assert payload["total_stars"] == 4


def test_root_reports_service():
    status, payload = _request("GET", "/")
    assert status == 200
    assert payload["service"] == "BrightStars Rewards"


def test_stars_listing_uses_star_records(temp_db):
    db.insert_star("child-1", "act-1", 5, "Maths", "perfect score", is_perfect_score=True)
    db.insert_star("child-2", "act-2", 2, "English", "Decent effort")

    status, payload = _request("GET", "/stars", query="child_id=child-1")

    assert status == 200
    assert payload["child_id"] == "child-1"
    assert len(payload["stars"]) == 1
    record = payload["stars"][0]
    assert set(record) == {
        "id", "child_id", "activity_id", "amount", "subject", "reason", "is_perfect_score", "created_at",
    }
    assert record["is_perfect_score"] is True
