"""Read-mostly admin view over every learner's daily activity records."""

from collections import defaultdict
from collections.abc import Callable
from datetime import datetime

import structlog
from pydantic import BaseModel, Field

from speaksmart.activities.catalog import DAILY_ACTIVITIES
from speaksmart.activities.date_keys import date_key
from speaksmart.activities.lifecycle import QuizAttemptLifecycle
from speaksmart.errors import ConfirmationRequired, SpeakSmartError
from speaksmart.models.activity import MAX_DAILY_ATTEMPTS, DailyActivityRecord
from speaksmart.models.password_reset import PasswordResetRequest, ResetStatus
from speaksmart.models.user_profile import UserProfile
from speaksmart.storage.document_store import SERVER_TIMESTAMP, DocumentSnapshot, DocumentStore
from speaksmart.storage.paths import (
    PASSWORD_RESET_REQUESTS,
    activity_id_of,
    daily_activities_collection,
    date_key_of,
    reset_request_path,
)
from speaksmart.storage.profiles import list_profiles

logger = structlog.get_logger()


class ActivityEntry(BaseModel):
    id: str
    record: DailyActivityRecord

    @property
    def activity_id(self) -> str:
        return self.record.activity_id or activity_id_of(self.id)


class DateGroup(BaseModel):
    date_key: str
    activities: list[ActivityEntry]


class AdminUserView(BaseModel):
    uid: str
    profile: UserProfile
    dates: list[DateGroup] = Field(default_factory=list)
    error: str | None = None


class TaskCell(BaseModel):
    attempts: int = 0
    attempt1_score: int | None = None
    attempt2_score: int | None = None


class AdminOverview(BaseModel):
    users: list[AdminUserView]
    requests: list[PasswordResetRequest]
    unread_count: int


UserViewCallback = Callable[[AdminUserView], None]


def group_by_date(snapshots: list[DocumentSnapshot]) -> list[DateGroup]:
    """Group ``{dateKey}_{activityId}`` records by date, newest first."""
    by_date: dict[str, list[ActivityEntry]] = defaultdict(list)
    for snap in snapshots:
        if not snap.exists:
            continue
        by_date[date_key_of(snap.id)].append(
            ActivityEntry(id=snap.id, record=DailyActivityRecord.model_validate(snap.to_dict()))
        )
    return [
        DateGroup(date_key=key, activities=by_date[key])
        for key in sorted(by_date, reverse=True)
    ]


def task_cell(activities: list[ActivityEntry], task_id: str) -> TaskCell:
    """Attempts and scores for one task on one day."""
    entry = next((a for a in activities if a.activity_id == task_id), None)
    if entry is None:
        return TaskCell()
    record = entry.record
    scores = [a.score for a in record.attempts]
    first = record.attempt1_score if record.attempt1_score is not None else (
        scores[0] if len(scores) > 0 else None
    )
    second = record.attempt2_score if record.attempt2_score is not None else (
        scores[1] if len(scores) > 1 else None
    )
    counted = record.attempt_count if "attempt_count" in record.model_fields_set else len(scores)
    return TaskCell(
        attempts=min(MAX_DAILY_ATTEMPTS, counted),
        attempt1_score=first,
        attempt2_score=second,
    )


def score_matrix(user: AdminUserView) -> dict[str, dict[str, TaskCell]]:
    """Per day, per catalog task: the cells shown on the admin table."""
    return {
        group.date_key: {
            activity.id: task_cell(group.activities, activity.id)
            for activity in DAILY_ACTIVITIES
        }
        for group in user.dates
    }


class AdminAggregationView:
    """Loads every learner and keeps selected learners live.

    Live subscriptions are owned by this view and released by ``detach`` or
    ``close``.

    Args:
        store: Document store.
        lifecycle: Used for the date-scoped attempt reset.
        clock: Decides which day "today" is for resets.
    """

    def __init__(
        self,
        store: DocumentStore,
        lifecycle: QuizAttemptLifecycle,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self._clock = clock
        self.users: dict[str, AdminUserView] = {}
        self._unsubscribes: dict[str, Callable[[], None]] = {}

    async def _load_user(self, profile: UserProfile) -> AdminUserView:
        try:
            snapshots = await self.store.list_collection(daily_activities_collection(profile.uid))
            return AdminUserView(uid=profile.uid, profile=profile, dates=group_by_date(snapshots))
        except SpeakSmartError as e:
            logger.error("admin_user_load_failed", uid=profile.uid, error=str(e))
            return AdminUserView(uid=profile.uid, profile=profile, error=str(e))

    async def load_requests(self) -> list[PasswordResetRequest]:
        return [
            PasswordResetRequest.model_validate({**snap.to_dict(), "id": snap.id})
            for snap in await self.store.list_collection(PASSWORD_RESET_REQUESTS)
        ]

    async def load_all(self) -> AdminOverview:
        views = [await self._load_user(p) for p in await list_profiles(self.store)]
        self.users = {v.uid: v for v in views}
        requests = await self.load_requests()
        unread = sum(1 for r in requests if not r.admin_read)
        logger.info("admin_loaded", users=len(views), requests=len(requests), unread=unread)
        return AdminOverview(users=views, requests=requests, unread_count=unread)

    def live_attach(self, uid: str, on_change: UserViewCallback | None = None) -> None:
        """Re-derive ``uid``'s grouped records on every change to them."""
        self.detach(uid)

        def handle(snapshots: list[DocumentSnapshot]) -> None:
            view = self.users.get(uid)
            if view is None:
                return
            view = view.model_copy(update={"dates": group_by_date(snapshots), "error": None})
            self.users[uid] = view
            if on_change is not None:
                on_change(view)

        self._unsubscribes[uid] = self.store.subscribe(daily_activities_collection(uid), handle)

    def attach_all(self, on_change: UserViewCallback | None = None) -> None:
        for uid in list(self.users):
            self.live_attach(uid, on_change)

    def detach(self, uid: str) -> None:
        unsubscribe = self._unsubscribes.pop(uid, None)
        if unsubscribe is not None:
            unsubscribe()

    def close(self) -> None:
        for uid in list(self._unsubscribes):
            self.detach(uid)

    @property
    def attached(self) -> list[str]:
        return list(self._unsubscribes)

    async def reset_user_today(self, uid: str) -> int:
        return await self.lifecycle.reset_today(uid, date_key(self._clock()))

    async def clear_user_data(self, uid: str, confirmed: bool = False) -> int:
        """Delete every daily activity record of one learner."""
        if not confirmed:
            raise ConfirmationRequired(
                "Are you sure you want to clear all data for this user? This cannot be undone."
            )
        snapshots = await self.store.list_collection(daily_activities_collection(uid))
        for snap in snapshots:
            await self.store.delete(snap.path)
        logger.info("admin_cleared_user_data", uid=uid, deleted=len(snapshots))
        return len(snapshots)

    async def mark_all_read(self) -> int:
        unread = [r for r in await self.load_requests() if not r.admin_read]
        for request in unread:
            await self.store.update(reset_request_path(request.id), {
                "adminRead": True,
                "readAt": SERVER_TIMESTAMP,
            })
        return len(unread)

    async def approve_reset(self, request_id: str) -> None:
        await self.store.update(reset_request_path(request_id), {
            "approved": True,
            "status": str(ResetStatus.APPROVED),
            "approvedAt": SERVER_TIMESTAMP,
        })
        logger.info("password_reset_approved", request_id=request_id)

    async def deny_reset(self, request_id: str) -> None:
        await self.store.delete(reset_request_path(request_id))
        logger.info("password_reset_denied", request_id=request_id)

    async def complete_reset(self, request_id: str) -> None:
        await self.store.delete(reset_request_path(request_id))
        logger.info("password_reset_completed", request_id=request_id)
