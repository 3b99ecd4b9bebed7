"""The daily activity list: overview and the single entry point per activity."""

import structlog
from pydantic import BaseModel

from speaksmart.activities.catalog import get_activity
from speaksmart.activities.lifecycle import (
    QuizAttemptLifecycle,
    TimedActivityLifecycle,
    TimedAttempt,
)
from speaksmart.activities.stats import ActivityStatsAggregator, UserStats, compute_average_score
from speaksmart.errors import UserInputError
from speaksmart.models.activity import ActivityKind, ActivityStatus, DailyActivityRecord

logger = structlog.get_logger()


class DailyOverview(BaseModel):
    date_key: str
    activities: list[ActivityStatus]
    completed_count: int
    total: int
    average_score: int
    stats: UserStats | None = None


class OpenedActivity(BaseModel):
    """What the learner lands on after choosing an activity."""

    activity_id: str
    kind: ActivityKind
    quiz: DailyActivityRecord | None = None
    timed: TimedAttempt | None = None
    required_minutes: int | None = None


class ActivityBoard:
    def __init__(
        self,
        quiz: QuizAttemptLifecycle,
        timed: TimedActivityLifecycle,
        stats: ActivityStatsAggregator,
    ):
        self.quiz = quiz
        self.timed = timed
        self.stats = stats

    async def open(self, uid: str, date_key: str, activity_id: str) -> OpenedActivity:
        """Start an activity from the list, dispatching on its kind."""
        activity = get_activity(activity_id)
        if activity is None:
            raise UserInputError(f"Unknown activity: {activity_id}")

        logger.info("activity_started", uid=uid, activity_id=activity_id, kind=activity.kind)
        match activity.kind:
            case ActivityKind.QUIZ:
                await self.quiz.start_activity(uid, date_key, activity_id)
                record = await self.quiz.enter_activity(uid, date_key, activity_id)
                return OpenedActivity(activity_id=activity_id, kind=activity.kind, quiz=record)
            case ActivityKind.SPEAKING | ActivityKind.CONVERSATION:
                attempt = self.timed.begin(uid, activity_id)
                return OpenedActivity(
                    activity_id=activity_id,
                    kind=activity.kind,
                    timed=attempt,
                    required_minutes=self.timed.required_ms // 60000,
                )

    async def overview(self, uid: str, date_key: str) -> DailyOverview:
        statuses = await self.stats.load_daily_overview(uid, date_key)
        return DailyOverview(
            date_key=date_key,
            activities=statuses,
            completed_count=sum(1 for s in statuses if s.completed),
            total=len(statuses),
            average_score=compute_average_score(statuses),
            stats=await self.stats.get_user_stats(uid),
        )
