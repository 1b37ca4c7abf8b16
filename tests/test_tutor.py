import pytest
import requests

import db
import tutor
from engines.rate_limit import FixedWindowRateLimiter


class _FakeResponse:
    def __init__(self, payload=None, status_code=200, text=""):
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON")
        return self._payload


def _answer(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def limiter(monkeypatch):
    fresh = FixedWindowRateLimiter(limit=2, window_seconds=60, capacity=16)
    monkeypatch.setattr(tutor, "rate_limiter", fresh)
    return fresh


def test_answer_is_returned_and_stored(temp_db, limiter, monkeypatch):
    calls = []

    def _post(url, json=None, headers=None, timeout=None):
        calls.append(json)
        return _FakeResponse(_answer("Try counting in fives!"))

    monkeypatch.setattr(tutor.requests, "post", _post)

    reply = tutor.ask_tutor("user-1", "What is 5 x 3?", subject_id="Maths")

    assert reply.to_dict() == {"response": "Try counting in fives!"}
    assert calls[0]["messages"][0]["role"] == "system"
    assert "Maths" in calls[0]["messages"][0]["content"]
    assert calls[0]["messages"][1] == {"role": "user", "content": "What is 5 x 3?"}

    history = tutor.fetch_user_messages("user-1")
    assert history[0]["message"] == "What is 5 x 3?"
    assert history[0]["response"] == "Try counting in fives!"


def test_rate_limit_short_circuits(temp_db, limiter, monkeypatch):
    calls = []

    def _post(*args, **kwargs):
        calls.append(kwargs)
        return _FakeResponse(_answer("ok"))

    monkeypatch.setattr(tutor.requests, "post", _post)

    tutor.ask_tutor("user-1", "one")
    tutor.ask_tutor("user-1", "two")
    blocked = tutor.ask_tutor("user-1", "three")

    assert blocked.response == tutor.RATE_LIMITED_RESPONSE
    assert blocked.error == "Rate limit exceeded"
    assert len(calls) == 2
    assert tutor.ask_tutor("user-2", "hello").response == "ok"


def test_http_error_returns_fallback(temp_db, limiter, monkeypatch):
    monkeypatch.setattr(
        tutor.requests,
        "post",
        lambda *args, **kwargs: _FakeResponse(status_code=503, text="overloaded"),
    )

    reply = tutor.ask_tutor("user-1", "Why is the sky blue?")

    assert reply.response == tutor.FALLBACK_RESPONSE
    assert reply.error.startswith("LLM-HTTP 503")
    assert tutor.fetch_user_messages("user-1") == []


def test_connection_error_returns_fallback(temp_db, limiter, monkeypatch):
    def _post(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(tutor.requests, "post", _post)

    reply = tutor.ask_tutor("user-1", "Spell 'because'")
    assert reply.response == tutor.FALLBACK_RESPONSE
    assert "connection refused" in reply.error


def test_malformed_payload_returns_fallback(temp_db, limiter, monkeypatch):
    monkeypatch.setattr(tutor.requests, "post", lambda *a, **k: _FakeResponse({"choices": []}))
    reply = tutor.ask_tutor("user-1", "Hi")
    assert reply.response == tutor.FALLBACK_RESPONSE
    assert reply.error.startswith("Unexpected LLM response")


def test_storage_failure_still_answers(temp_db, limiter, monkeypatch):
    monkeypatch.setattr(tutor.requests, "post", lambda *a, **k: _FakeResponse(_answer("42")))

    def _broken(*args, **kwargs):
        raise RuntimeError("read-only database")

    monkeypatch.setattr(db, "record_tutor_message", _broken)

    assert tutor.ask_tutor("user-1", "What is 6 x 7?").response == "42"
