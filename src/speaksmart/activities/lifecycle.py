"""Daily attempt lifecycle for quiz and timed activities.

A quiz moves through ``NotStarted -> Attempt1Active -> Attempt1Done ->
(locked until tomorrow | Attempt2Active) -> Completed`` for each
(user, day, activity). Every transition is a read-modify-write against the
document store; there are no transactions, so the retest lock is written
before any question generation happens.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from speaksmart.activities.catalog import achievement_title, get_activity, resolve_topic
from speaksmart.activities.questions import QuestionGenerator
from speaksmart.activities.scoring import compute_score
from speaksmart.errors import DailyLimitReached, UserInputError
from speaksmart.models.activity import (
    MAX_DAILY_ATTEMPTS,
    ActivityKind,
    AttemptOutcome,
    DailyActivityRecord,
    Question,
)
from speaksmart.storage.document_store import SERVER_TIMESTAMP, DocumentStore
from speaksmart.storage.paths import daily_activities_collection, daily_activity_path

logger = structlog.get_logger()


@dataclass(frozen=True)
class RetestLock:
    """Proof that the retest lock for one record has been written.

    Only ``QuizAttemptLifecycle`` creates these; seeding a retest requires one.
    """

    path: str
    activity_id: str
    previous_questions: tuple[str, ...] = field(default_factory=tuple)


class QuizAttemptLifecycle:
    """Quiz entry, finish and retest against the document store.

    Args:
        store: Document store holding ``users/{uid}/dailyActivities``.
        generator: Produces question sets.
        clock: Time source for values stored inside arrays.
    """

    def __init__(
        self,
        store: DocumentStore,
        generator: QuestionGenerator,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.generator = generator
        self._clock = clock

    async def load(self, uid: str, date_key: str, activity_id: str) -> DailyActivityRecord | None:
        snap = await self.store.get(daily_activity_path(uid, date_key, activity_id))
        if not snap.exists:
            return None
        return DailyActivityRecord.model_validate(snap.to_dict())

    async def start_activity(self, uid: str, date_key: str, activity_id: str) -> None:
        """Entry from the activity list.

        With one attempt already finished, the retest lock is written
        (unseeded) before the quiz is entered, so the quiz view generates
        fresh questions. An unfinished first attempt is simply resumed.

        Raises:
            DailyLimitReached: Both attempts are used up.
        """
        record = await self.load(uid, date_key, activity_id)
        attempt_count = record.attempt_count if record else 0
        if attempt_count >= MAX_DAILY_ATTEMPTS:
            raise DailyLimitReached(activity_id, date_key)
        if attempt_count == 1 and record.attempts:
            await self.store.set(
                daily_activity_path(uid, date_key, activity_id),
                {
                    "attemptCount": 2,
                    "completed": False,
                    "retestInProgress": True,
                    "retestSeeded": False,
                    "retestStartedAt": SERVER_TIMESTAMP,
                },
                merge=True,
            )
            logger.info("retest_locked", uid=uid, activity_id=activity_id, source="activity_list")

    async def enter_activity(self, uid: str, date_key: str, activity_id: str) -> DailyActivityRecord:
        """Open the quiz view and return the record with its questions.

        Raises:
            DailyLimitReached: Two attempts used and no retest in progress.
                Nothing is written in that case.
        """
        path = daily_activity_path(uid, date_key, activity_id)
        record = await self.load(uid, date_key, activity_id)

        if record is None:
            topic = resolve_topic(activity_id)
            questions = await self.generator.generate(topic)
            await self.store.set(path, {
                "activityId": activity_id,
                "dateKey": date_key,
                "topic": topic.label,
                "questions": [q.to_document() for q in questions],
                "attemptCount": 1,
                "attempts": [],
                "completed": False,
                "retestInProgress": False,
                "createdAt": SERVER_TIMESTAMP,
            })
            logger.info("quiz_created", uid=uid, activity_id=activity_id, date_key=date_key)
            return await self.load(uid, date_key, activity_id)

        if record.limit_reached:
            logger.info("quiz_entry_refused", uid=uid, activity_id=activity_id, date_key=date_key)
            raise DailyLimitReached(activity_id, date_key)

        if record.attempt_count == 0:
            await self.store.set(
                path, {"attemptCount": 1, "attemptStartedAt": SERVER_TIMESTAMP}, merge=True
            )

        if record.retest_in_progress and not record.retest_seeded:
            lock = RetestLock(
                path=path,
                activity_id=activity_id,
                previous_questions=tuple(q.question for q in record.questions),
            )
            await self.seed_retest(lock)

        return await self.load(uid, date_key, activity_id)

    async def finish(
        self, uid: str, date_key: str, activity_id: str, answers: dict[int, int]
    ) -> AttemptOutcome:
        """Score the current attempt against the stored questions and record it.

        Args:
            answers: Question index -> chosen option index. Unanswered
                questions count as wrong.

        Raises:
            UserInputError: No record today, or the current attempt was
                already finished and no retest is in progress.
            DailyLimitReached: Both attempts are used up.
        """
        path = daily_activity_path(uid, date_key, activity_id)
        record = await self.load(uid, date_key, activity_id)
        if record is None:
            raise UserInputError("This activity has not been started today")
        if record.limit_reached:
            raise DailyLimitReached(activity_id, date_key)
        if not record.retest_in_progress and len(record.attempts) >= record.attempt_count:
            logger.info("quiz_finish_refused", uid=uid, activity_id=activity_id, date_key=date_key)
            raise UserInputError("This attempt is already finished. Request a retest to try again")

        total = len(record.questions)
        correct = sum(
            1 for index, question in enumerate(record.questions)
            if question.is_correct(answers.get(index))
        )
        score = compute_score(correct, total)

        finishing_retest = record.retest_in_progress
        attempt_count = MAX_DAILY_ATTEMPTS if finishing_retest else max(1, record.attempt_count)
        previous = len(record.attempts)
        attempts = [a.to_document() for a in record.attempts]
        attempts.append({"score": score, "completedAt": self._clock().astimezone()})

        fields = {
            "attemptCount": attempt_count,
            "attempts": attempts,
            "completed": attempt_count >= MAX_DAILY_ATTEMPTS,
            "lastCompletedAt": SERVER_TIMESTAMP,
            "retestInProgress": False,
        }
        if finishing_retest or previous == 1:
            fields["attempt2Score"] = score
        elif previous == 0:
            fields["attempt1Score"] = score
        await self.store.set(path, fields, merge=True)

        completed = attempt_count >= MAX_DAILY_ATTEMPTS
        logger.info(
            "quiz_finished",
            uid=uid,
            activity_id=activity_id,
            score=score,
            attempt_count=attempt_count,
            completed=completed,
        )
        return AttemptOutcome(
            score=score,
            correct=correct,
            total=total,
            attempt_number=previous + 1,
            attempt_count=attempt_count,
            completed=completed,
            achievement_title=achievement_title(activity_id) if completed else None,
        )

    async def lock_retest(self, uid: str, date_key: str, activity_id: str) -> RetestLock:
        """Phase one of a retest: re-read the record and write the lock.

        Raises:
            UserInputError: No first attempt has been finished today.
            DailyLimitReached: Two attempts used or a retest already in progress.
        """
        path = daily_activity_path(uid, date_key, activity_id)
        record = await self.load(uid, date_key, activity_id)
        if record is None or not record.attempts:
            raise UserInputError("Finish the first attempt before a retest")
        if record.attempt_count >= MAX_DAILY_ATTEMPTS or record.retest_in_progress:
            logger.info("retest_refused", uid=uid, activity_id=activity_id, date_key=date_key)
            raise DailyLimitReached(activity_id, date_key)

        await self.store.set(
            path,
            {
                "retestInProgress": True,
                "attemptCount": MAX_DAILY_ATTEMPTS,
                "completed": False,
                "retestSeeded": False,
                "retestStartedAt": SERVER_TIMESTAMP,
            },
            merge=True,
        )
        logger.info("retest_locked", uid=uid, activity_id=activity_id, source="quiz")
        return RetestLock(
            path=path,
            activity_id=activity_id,
            previous_questions=tuple(q.question for q in record.questions),
        )

    async def seed_retest(self, lock: RetestLock) -> list[Question]:
        """Phase two of a retest: store a fresh question set."""
        questions = await self.generator.generate(
            resolve_topic(lock.activity_id), avoid=list(lock.previous_questions)
        )
        await self.store.set(
            lock.path,
            {
                "questions": [q.to_document() for q in questions],
                "retestSeeded": True,
                "retestAt": SERVER_TIMESTAMP,
            },
            merge=True,
        )
        logger.info("retest_seeded", path=lock.path, count=len(questions))
        return questions

    async def request_retest(self, uid: str, date_key: str, activity_id: str) -> list[Question]:
        lock = await self.lock_retest(uid, date_key, activity_id)
        return await self.seed_retest(lock)

    async def reset_today(self, uid: str, date_key: str) -> int:
        """Clear today's attempts for every activity. Returns the number reset."""
        prefix = f"{date_key}_"
        collection = daily_activities_collection(uid)
        count = 0
        for snap in await self.store.list_collection(collection):
            if not snap.id.startswith(prefix):
                continue
            await self.store.set(
                snap.path,
                {
                    "attemptCount": 0,
                    "attempts": [],
                    "completed": False,
                    "retestInProgress": False,
                    "retestSeeded": False,
                    "attempt1Score": None,
                    "attempt2Score": None,
                },
                merge=True,
            )
            count += 1
        logger.info("daily_activities_reset", uid=uid, date_key=date_key, count=count)
        return count


@dataclass
class TimedAttempt:
    """An in-progress speaking or conversation activity. Never persisted."""

    uid: str
    activity_id: str
    kind: ActivityKind
    started_at: datetime

    def elapsed_ms(self, now: datetime) -> int:
        return max(0, int((now - self.started_at).total_seconds() * 1000))


class TimedActivityLifecycle:
    """Completion for activities that finish after a required time.

    Running attempts are kept in memory per (uid, activity). Leaving before
    the threshold discards the attempt; nothing is written.
    """

    def __init__(
        self,
        store: DocumentStore,
        required_ms: int = 20 * 60 * 1000,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.required_ms = required_ms
        self._clock = clock
        self._active: dict[tuple[str, str], TimedAttempt] = {}

    def begin(self, uid: str, activity_id: str) -> TimedAttempt:
        activity = get_activity(activity_id)
        if activity is None or not activity.kind.is_timed:
            raise UserInputError(f"{activity_id} is not a timed activity")
        attempt = TimedAttempt(uid=uid, activity_id=activity_id, kind=activity.kind,
                               started_at=self._clock())
        self._active[(uid, activity_id)] = attempt
        return attempt

    def active_attempt(self, uid: str, activity_id: str) -> TimedAttempt | None:
        return self._active.get((uid, activity_id))

    def abandon(self, uid: str, activity_id: str) -> None:
        if self._active.pop((uid, activity_id), None) is not None:
            logger.info("timed_activity_abandoned", uid=uid, activity_id=activity_id)

    def progress(self, attempt: TimedAttempt) -> int:
        """Percent of the required time elapsed, capped at 100."""
        elapsed = attempt.elapsed_ms(self._clock())
        return min(100, int(elapsed * 100 / self.required_ms))

    async def complete(self, attempt: TimedAttempt, date_key: str) -> bool:
        """Record completion once the required time has elapsed.

        Returns False, writing nothing, when called too early.
        """
        elapsed = attempt.elapsed_ms(self._clock())
        if elapsed < self.required_ms:
            logger.info(
                "timed_activity_too_early",
                uid=attempt.uid,
                activity_id=attempt.activity_id,
                elapsed_ms=elapsed,
            )
            return False

        await self.store.set(
            daily_activity_path(attempt.uid, date_key, attempt.activity_id),
            {
                "activityId": attempt.activity_id,
                "dateKey": date_key,
                "completed": True,
                "completedAt": SERVER_TIMESTAMP,
                "timeSpent": self.required_ms,
                "type": str(attempt.kind),
            },
            merge=True,
        )
        self._active.pop((attempt.uid, attempt.activity_id), None)
        logger.info("timed_activity_completed", uid=attempt.uid, activity_id=attempt.activity_id)
        return True
