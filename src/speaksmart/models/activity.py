"""Daily activity data models."""

from datetime import datetime
from enum import StrEnum

from pydantic import AliasChoices, BaseModel, Field

from speaksmart.models.document import DocumentModel

MAX_DAILY_ATTEMPTS = 2


class ActivityKind(StrEnum):
    """Closed set of daily activity types."""

    QUIZ = "quiz"
    SPEAKING = "speaking"
    CONVERSATION = "conversation"

    @property
    def is_timed(self) -> bool:
        return self is not ActivityKind.QUIZ


class QuizTopic(StrEnum):
    """Question-generation topics."""

    GRAMMAR = "grammar"
    VOCABULARY = "vocabulary"
    READING = "reading"
    IDIOMS = "idioms"
    SPEAKING = "speaking"
    CONVERSATION = "conversation"
    GENERAL = "general"

    @property
    def label(self) -> str:
        return _TOPIC_LABELS[self]


_TOPIC_LABELS: dict[QuizTopic, str] = {
    QuizTopic.GRAMMAR: "English Grammar",
    QuizTopic.VOCABULARY: "English Vocabulary",
    QuizTopic.READING: "Reading Comprehension",
    QuizTopic.IDIOMS: "English Idioms and Phrases",
    QuizTopic.SPEAKING: "Speaking Practice (Listening & Pronunciation)",
    QuizTopic.CONVERSATION: "Daily Conversation Scenarios",
    QuizTopic.GENERAL: "General English",
}


class ActivityDefinition(BaseModel):
    """One entry of the daily activity catalog."""

    id: str
    title: str
    description: str
    kind: ActivityKind
    topic: QuizTopic
    duration_minutes: int
    points: int
    required_minutes: int | None = None  # timed activities only
    scenario: str | None = None
    prompts: list[str] = Field(default_factory=list)


class Question(DocumentModel):
    """A multiple-choice question. Immutable once stored."""

    id: int | str | None = None
    question: str
    options: list[str]
    correct_index: int = Field(
        validation_alias=AliasChoices("correctIndex", "correctAnswer", "correct_index"),
        serialization_alias="correctIndex",
    )
    explanation: str = ""
    passage: str | None = None

    def is_correct(self, option_index: int | None) -> bool:
        return option_index is not None and option_index == self.correct_index


class AttemptRecord(DocumentModel):
    score: int
    completed_at: datetime | None = None


class DailyActivityRecord(DocumentModel):
    """State of one activity for one user on one calendar day."""

    activity_id: str = ""
    date_key: str = ""
    topic: str | None = None
    type: ActivityKind | None = None
    questions: list[Question] = Field(default_factory=list)
    attempt_count: int = Field(default=0, ge=0)
    attempts: list[AttemptRecord] = Field(default_factory=list)
    attempt1_score: int | None = None
    attempt2_score: int | None = None
    completed: bool = False
    retest_in_progress: bool = False
    retest_seeded: bool = False
    completed_at: datetime | None = None
    time_spent: int | None = None  # milliseconds
    created_at: datetime | None = None
    last_completed_at: datetime | None = None

    @property
    def attempt_scores(self) -> list[int]:
        """Scores of today's attempts, preferring the explicit score fields."""
        if self.attempt1_score is not None or self.attempt2_score is not None:
            return [s for s in (self.attempt1_score, self.attempt2_score) if s is not None]
        return [a.score for a in self.attempts[:MAX_DAILY_ATTEMPTS]]

    @property
    def limit_reached(self) -> bool:
        return self.attempt_count >= MAX_DAILY_ATTEMPTS and not self.retest_in_progress


class ActivityStatus(BaseModel):
    """An activity as shown on the daily list."""

    activity: ActivityDefinition
    attempt_count: int = 0
    completed: bool = False
    progress: int = 0
    attempt_scores: list[int] = Field(default_factory=list)


class AttemptOutcome(BaseModel):
    """Result of finishing a quiz attempt."""

    score: int
    correct: int
    total: int
    attempt_number: int
    attempt_count: int
    completed: bool
    achievement_title: str | None = None
