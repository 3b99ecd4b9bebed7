"""User profile model for tracking learning progress across sessions."""

from datetime import datetime

from pydantic import Field

from speaksmart.models.document import DocumentModel

DEFAULT_DISPLAY_NAME = "English Learner"
DEFAULT_LEVEL = "Beginner"


class UserProfile(DocumentModel):
    uid: str = ""
    email: str | None = None
    display_name: str = DEFAULT_DISPLAY_NAME
    photo_url: str | None = Field(default=None, alias="photoURL")
    level: str = DEFAULT_LEVEL
    streak: int = Field(default=0, ge=0)
    best_streak: int = Field(default=0, ge=0)
    total_lessons: int = Field(default=0, ge=0)
    hours_learned: float = Field(default=0.0, ge=0)
    total_sessions: int = Field(default=0, ge=0)
    last_active: datetime | None = None
    last_streak_update: datetime | None = None
    created_at: datetime | None = None


class LessonRecord(DocumentModel):
    lesson_id: str
    score: float
    attempts: int = 0
    completed_at: datetime | None = None
