"""Learner session data models."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class SessionStatus(StrEnum):
    """Session lifecycle states."""

    CREATED = "created"
    ACTIVE = "active"
    COMPLETED = "completed"


class ConversationMode(StrEnum):
    """How an AI reply will be delivered to the learner."""

    CONVERSATION = "conversation"
    VOICE = "voice"
    PRONUNCIATION = "pronunciation"


class Utterance(BaseModel):
    """A single utterance in the conversation."""

    role: str  # "user" or "assistant"
    text: str
    timestamp: datetime = Field(default_factory=datetime.now)


class ActivityLogEntry(BaseModel):
    type: str
    timestamp: datetime = Field(default_factory=datetime.now)
    details: dict[str, Any] = Field(default_factory=dict)


class LearningSession(BaseModel):
    """Explicit context for one learner's active screen.

    Created by ``ActivityStatsAggregator.start_session`` and closed by
    ``ActivityStatsAggregator.end_session``.
    """

    session_id: str
    uid: str
    status: SessionStatus = SessionStatus.CREATED
    started_at: datetime = Field(default_factory=datetime.now)
    ended_at: datetime | None = None
    utterances: list[Utterance] = Field(default_factory=list)
    activity_log: list[ActivityLogEntry] = Field(default_factory=list)

    def add_utterance(self, role: str, text: str) -> Utterance:
        """Add an utterance to the conversation history."""
        utterance = Utterance(role=role, text=text)
        self.utterances.append(utterance)
        return utterance

    def log_activity(self, activity_type: str, **details: Any) -> ActivityLogEntry:
        entry = ActivityLogEntry(type=activity_type, details=details)
        self.activity_log.append(entry)
        return entry

    def clear_history(self) -> None:
        self.utterances.clear()

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def elapsed_minutes(self, now: datetime | None = None) -> int:
        """Whole minutes since the session started."""
        end = self.ended_at or now or datetime.now()
        return max(0, int((end - self.started_at).total_seconds() // 60))

    @property
    def duration_seconds(self) -> float:
        """Session duration in seconds (uses current time if session is still active)."""
        if self.ended_at is None:
            return (datetime.now() - self.started_at).total_seconds()
        return (self.ended_at - self.started_at).total_seconds()
