import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

import db
from engines.rate_limit import FixedWindowRateLimiter
from env_validation import get_env_int

logger = logging.getLogger(__name__)

# --------- Model/endpoint from environment ---------
MODEL_ID = os.getenv("MODEL_ID", "gpt-4o-mini")
LLM_URL = os.getenv("LLM_URL", "http://localhost:4891/v1/chat/completions")
LLM_API_KEY = os.getenv("LLM_API_KEY", "")
LLM_TIMEOUT = get_env_int("LLM_TIMEOUT", 30)

RATE_LIMITED_RESPONSE = (
    "I'm sorry, you've asked too many questions too quickly. "
    "Please wait a moment before asking another question."
)
FALLBACK_RESPONSE = "I'm sorry, I couldn't process your question right now. Please try again later."

SYSTEM_PROMPT = (
    "You are a friendly AI tutor for a primary school child learning English and Maths. "
    "Explain things simply, encourage the child and guide them towards the answer instead of "
    "giving it away."
)

rate_limiter = FixedWindowRateLimiter(
    limit=get_env_int("TUTOR_RATE_LIMIT", 10),
    window_seconds=get_env_int("TUTOR_RATE_WINDOW_SECONDS", 60),
    capacity=get_env_int("TUTOR_RATE_CAPACITY", 1024),
)


class TutorServiceError(RuntimeError):
    """Raised when the text-generation service returns no usable answer."""


@dataclass
class TutorResponse:
    response: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"response": self.response}
        if self.error:
            payload["error"] = self.error
        return payload


def _build_messages(question: str, subject_id: Optional[str]) -> List[Dict[str, str]]:
    system = SYSTEM_PROMPT
    if subject_id:
        system += f" You are helping with {subject_id}."
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": question},
    ]


def _chat_completion(messages: List[Dict[str, str]]) -> str:
    headers = {"Content-Type": "application/json"}
    if LLM_API_KEY:
        headers["Authorization"] = f"Bearer {LLM_API_KEY}"
    payload = {"model": MODEL_ID, "messages": messages, "temperature": 0.7}
    try:
        r = requests.post(LLM_URL, json=payload, headers=headers, timeout=LLM_TIMEOUT)
        r.raise_for_status()
        data = r.json()
    except requests.HTTPError as e:
        raise TutorServiceError(f"LLM-HTTP {e.response.status_code}: {e.response.text[:300]}") from e
    except (requests.RequestException, ValueError) as e:
        raise TutorServiceError(f"LLM error: {e}") from e

    try:
        return data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        raise TutorServiceError(f"Unexpected LLM response: {str(data)[:300]}")


def ask_tutor(user_id: str, question: str, subject_id: Optional[str] = None) -> TutorResponse:
    """Answer ``question`` for ``user_id``; never raises for service failures."""
    if not rate_limiter.allow(user_id):
        logger.info("Tutor rate limit exceeded for user %s", user_id)
        return TutorResponse(response=RATE_LIMITED_RESPONSE, error="Rate limit exceeded")

    try:
        answer = _chat_completion(_build_messages(question, subject_id))
    except TutorServiceError as exc:
        logger.error("Error asking tutor for user %s: %s", user_id, exc)
        return TutorResponse(response=FALLBACK_RESPONSE, error=str(exc))

    try:
        db.record_tutor_message(user_id, subject_id, question, answer)
    except Exception:
        logger.exception("Failed to store tutor message for user %s", user_id)
    return TutorResponse(response=answer)


def fetch_user_messages(user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
    return db.list_tutor_messages(user_id, limit=limit)
