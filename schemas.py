"""Pydantic request and response models for the rewards API."""

from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field, field_validator

from engines.activity_completion import convert_difficulty_to_string

__all__ = [
    "Subject",
    "Difficulty",
    "ActivityCompletionBody",
    "BadgeTypeBody",
    "ChildBody",
    "NotificationReadBody",
    "TutorQuestionBody",
    "StarRecord",
    "StarList",
    "ChildLevel",
    "GamificationEventOut",
    "ActivityCompletionResponse",
]

Subject = Literal["English", "Maths"]
Difficulty = Literal["easy", "medium", "hard"]
AchievementKind = Literal[
    "total_stars",
    "activities_completed",
    "streak_days",
    "perfect_score",
    "subject_activities",
]


class ActivityCompletionBody(BaseModel):
    child_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    activity_id: str = Field(min_length=1)
    subject: Subject
    score: float = Field(ge=0, le=100, description="Activity score as a percentage.")
    time_taken: int = Field(default=0, ge=0, description="Seconds spent on the activity.")
    topic: str = ""
    difficulty: Difficulty = "medium"

    @field_validator("difficulty", mode="before")
    @classmethod
    def _numeric_difficulty(cls, value: Any) -> Any:
        # Activity definitions store difficulty as 1-3.
        if isinstance(value, int) and not isinstance(value, bool):
            return convert_difficulty_to_string(value)
        return value


class BadgeTypeBody(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    image_url: str | None = None
    subject: Literal["English", "Maths", "General"] = "General"
    level: int = Field(default=1, ge=1, le=3)
    required_achievement: AchievementKind
    required_value: int = Field(ge=1)


class ChildBody(BaseModel):
    child_id: str = Field(min_length=1)


class NotificationReadBody(BaseModel):
    notification_id: int


class TutorQuestionBody(BaseModel):
    user_id: str = Field(min_length=1)
    question: str = Field(min_length=1)
    subject_id: str | None = None


class StarRecord(BaseModel):
    id: int
    child_id: str
    activity_id: str
    amount: int
    subject: str
    reason: str
    is_perfect_score: bool = False
    created_at: str | None = None


class StarList(BaseModel):
    child_id: str
    stars: List[StarRecord] = Field(default_factory=list)


class ChildLevel(BaseModel):
    child_id: str
    current_level: int
    current_title: str
    total_stars: int
    total_badges: int
    english_level: int
    maths_level: int
    streak_days: int
    longest_streak: int
    last_activity_date: str | None = None
    updated_at: str | None = None
    stars_to_next_level: int = 0
    level_progress_percent: int = 0


class GamificationEventOut(BaseModel):
    child_id: str
    kind: str
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)


class ActivityCompletionResponse(BaseModel):
    activity_result_id: int
    stars: Dict[str, Any] | None = None
    streak: Dict[str, Any] | None = None
    badges_earned: List[Dict[str, Any]] = Field(default_factory=list)
    events: List[GamificationEventOut] = Field(default_factory=list)
    failed_steps: List[str] = Field(default_factory=list)
