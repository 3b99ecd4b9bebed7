"""Streaks, study time, lesson counts and today's activity status."""

import math
import uuid
from collections.abc import Callable
from datetime import datetime

import structlog
from pydantic import BaseModel

from speaksmart.activities.catalog import DAILY_ACTIVITIES
from speaksmart.activities.date_keys import day_difference
from speaksmart.activities.scoring import round_half_up
from speaksmart.errors import DocumentNotFoundError
from speaksmart.models.activity import (
    MAX_DAILY_ATTEMPTS,
    ActivityKind,
    ActivityStatus,
    DailyActivityRecord,
)
from speaksmart.models.session import LearningSession, SessionStatus
from speaksmart.models.user_profile import DEFAULT_LEVEL
from speaksmart.storage.document_store import SERVER_TIMESTAMP, DocumentStore, Increment
from speaksmart.storage.paths import daily_activity_path, lesson_path, user_path
from speaksmart.storage.profiles import load_profile

logger = structlog.get_logger()


class UserStats(BaseModel):
    hours_learned: float = 0
    total_lessons: int = 0
    streak: int = 0
    best_streak: int = 0
    level: str = DEFAULT_LEVEL
    total_sessions: int = 0
    last_active: datetime | None = None


def compute_average_score(statuses: list[ActivityStatus]) -> int:
    """Rounded mean of every quiz attempt score today, 0 when there are none."""
    scores = [
        score
        for status in statuses
        if status.activity.kind == ActivityKind.QUIZ
        for score in status.attempt_scores
    ]
    if not scores:
        return 0
    return round_half_up(sum(scores) / len(scores))


def hours_from_minutes(minutes: int) -> float:
    return math.floor(minutes / 60 * 100 + 0.5) / 100


class ActivityStatsAggregator:
    """Profile-level progress tracking.

    Args:
        store: Document store holding user profiles.
        clock: Time source for streak days and session lengths.
    """

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self._clock = clock

    async def update_streak(self, uid: str) -> int | None:
        """Advance the daily streak. Returns the streak, or None without a profile."""
        profile = await load_profile(self.store, uid)
        if profile is None:
            return None

        streak = profile.streak
        if profile.last_streak_update is None:
            streak = 1
        else:
            days = day_difference(profile.last_streak_update, self._clock())
            if days <= 0:
                return streak
            streak = streak + 1 if days == 1 else 1

        fields = {
            "streak": streak,
            "lastStreakUpdate": SERVER_TIMESTAMP,
            "lastActive": SERVER_TIMESTAMP,
        }
        if streak > profile.best_streak:
            fields["bestStreak"] = streak
        await self.store.update(user_path(uid), fields)
        logger.info("streak_updated", uid=uid, streak=streak, previous=profile.streak)
        return streak

    def start_session(self, uid: str) -> LearningSession:
        session = LearningSession(
            session_id=uuid.uuid4().hex,
            uid=uid,
            status=SessionStatus.ACTIVE,
            started_at=self._clock(),
        )
        logger.info("learning_session_started", uid=uid, session_id=session.session_id)
        return session

    async def end_session(self, session: LearningSession) -> float:
        """Close the session and add its whole minutes to hoursLearned.

        Returns the hours added. Ending an already closed session adds nothing.
        """
        if not session.is_active:
            return 0.0
        session.ended_at = self._clock()
        session.status = SessionStatus.COMPLETED

        minutes = session.elapsed_minutes()
        hours = hours_from_minutes(minutes)
        try:
            await self.store.update(user_path(session.uid), {
                "hoursLearned": Increment(hours),
                "lastActive": SERVER_TIMESTAMP,
                "totalSessions": Increment(1),
            })
        except DocumentNotFoundError:
            logger.warning("learning_session_without_profile", uid=session.uid)
            return 0.0
        logger.info(
            "learning_session_ended",
            uid=session.uid,
            session_id=session.session_id,
            minutes=minutes,
            hours_added=hours,
        )
        return hours

    async def record_lesson_completion(self, uid: str, lesson_id: str, score: float) -> bool:
        if await load_profile(self.store, uid) is None:
            logger.warning("lesson_completion_without_profile", uid=uid, lesson_id=lesson_id)
            return False
        await self.store.update(user_path(uid), {
            "totalLessons": Increment(1),
            "lastActive": SERVER_TIMESTAMP,
        })
        await self.store.set(
            lesson_path(uid, lesson_id),
            {
                "lessonId": lesson_id,
                "score": score,
                "completedAt": SERVER_TIMESTAMP,
                "attempts": Increment(1),
            },
            merge=True,
        )
        logger.info("lesson_completed", uid=uid, lesson_id=lesson_id, score=score)
        return True

    async def get_user_stats(self, uid: str) -> UserStats | None:
        profile = await load_profile(self.store, uid)
        if profile is None:
            return None
        return UserStats(
            hours_learned=profile.hours_learned,
            total_lessons=profile.total_lessons,
            streak=profile.streak,
            best_streak=profile.best_streak,
            level=profile.level or DEFAULT_LEVEL,
            total_sessions=profile.total_sessions,
            last_active=profile.last_active,
        )

    async def load_daily_overview(self, uid: str, date_key: str) -> list[ActivityStatus]:
        """Status of every catalog activity for one day."""
        statuses = []
        for activity in DAILY_ACTIVITIES:
            snap = await self.store.get(daily_activity_path(uid, date_key, activity.id))
            if not snap.exists:
                statuses.append(ActivityStatus(activity=activity))
                continue

            record = DailyActivityRecord.model_validate(snap.to_dict())
            if activity.kind == ActivityKind.QUIZ:
                completed = record.attempt_count >= MAX_DAILY_ATTEMPTS
                progress = 100 if completed else (50 if record.attempt_count > 0 else 0)
                statuses.append(ActivityStatus(
                    activity=activity,
                    attempt_count=record.attempt_count,
                    completed=completed,
                    progress=progress,
                    attempt_scores=record.attempt_scores,
                ))
            else:
                statuses.append(ActivityStatus(
                    activity=activity,
                    completed=record.completed,
                    progress=100 if record.completed else 0,
                ))
        return statuses
