"""WebSocket handlers for learner sessions and the live admin dashboard."""

import asyncio

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from speaksmart.activities.catalog import DAILY_ACTIVITIES
from speaksmart.activities.date_keys import MidnightRollover
from speaksmart.activities.scoring import AnswerSheet
from speaksmart.api.admin import overview_payload, request_payload, user_payload
from speaksmart.api.dependencies import Services
from speaksmart.errors import DailyLimitReached, SpeakSmartError, UserInputError
from speaksmart.identity.provider import Identity
from speaksmart.models.session import ConversationMode, LearningSession

logger = structlog.get_logger()


def error_message(error: SpeakSmartError) -> dict:
    message = {"type": "error", "error": type(error).__name__, "message": str(error)}
    if isinstance(error, DailyLimitReached):
        message["activity_id"] = error.activity_id
        message["date_key"] = error.date_key
    return message


class LearnerSessionManager:
    """One signed-in learner's live session.

    Holds the ``LearningSession`` (history and time tracking), the answer
    sheets of open quizzes, and the midnight rollover that refreshes the
    activity list when the day changes.

    Args:
        services: Shared service container.
        browser_ws: WebSocket connection to the browser.
    """

    def __init__(self, services: Services, browser_ws: WebSocket):
        self.services = services
        self.browser_ws = browser_ws
        self.identity: Identity | None = None
        self.session: LearningSession | None = None
        self.sheets: dict[str, AnswerSheet] = {}
        self.rollover = MidnightRollover(self._on_rollover, clock=services.clock)

    @property
    def uid(self) -> str:
        return self.identity.uid

    async def start(self, token: str) -> None:
        """Verify the token, bump the streak and open a learning session."""
        self.identity = await self.services.accounts.current(token)
        streak = await self.services.stats.update_streak(self.uid)
        self.session = self.services.stats.start_session(self.uid)
        self.rollover.start()
        logger.info("learner_session_starting", uid=self.uid, session_id=self.session.session_id)

        await self._send_to_browser({
            "type": "session_state",
            "status": "active",
            "session_id": self.session.session_id,
            "streak": streak,
        })
        await self._send_overview()

    async def stop(self) -> None:
        """Stop the session, discarding unfinished work and recording time spent."""
        await self.rollover.stop()
        self.sheets.clear()
        for activity_id in list(self._timed_ids()):
            self.services.timed.abandon(self.uid, activity_id)
        hours = await self.services.stats.end_session(self.session)
        logger.info("learner_session_stopped", uid=self.uid, hours_added=hours)

        await self._send_to_browser({
            "type": "session_state",
            "status": "completed",
            "session_id": self.session.session_id,
            "hours_added": hours,
        })

    def _timed_ids(self) -> list[str]:
        return [
            a.id for a in DAILY_ACTIVITIES
            if a.kind.is_timed and self.services.timed.active_attempt(self.uid, a.id)
        ]

    async def handle(self, data: dict) -> None:
        """Dispatch one browser message."""
        msg_type = data.get("type", "")
        activity_id = data.get("activity_id", "")

        if msg_type == "open_activity":
            await self._open_activity(activity_id)
        elif msg_type == "answer":
            await self._answer(activity_id, data.get("question_index"), data.get("option_index"))
        elif msg_type == "finish":
            await self._finish(activity_id)
        elif msg_type == "request_retest":
            await self._request_retest(activity_id)
        elif msg_type == "chat":
            await self._chat(data.get("message", ""), data.get("mode"))
        elif msg_type == "timed_start":
            await self._timed_start(activity_id)
        elif msg_type == "timed_complete":
            await self._timed_complete(activity_id)
        elif msg_type == "timed_abandon":
            self.services.timed.abandon(self.uid, activity_id)
        elif msg_type == "get_overview":
            await self._send_overview()
        else:
            raise UserInputError(f"Unknown message type: {msg_type}")

    async def _open_activity(self, activity_id: str) -> None:
        opened = await self.services.board.open(self.uid, self.services.today(), activity_id)
        if opened.quiz is not None:
            self.sheets[activity_id] = AnswerSheet(opened.quiz.questions)
        self.session.log_activity("activity_opened", activity_id=activity_id, kind=str(opened.kind))
        await self._send_to_browser({
            "type": "activity_opened",
            **opened.model_dump(mode="json"),
        })

    def _sheet(self, activity_id: str) -> AnswerSheet:
        sheet = self.sheets.get(activity_id)
        if sheet is None:
            raise UserInputError("Open the activity before answering")
        return sheet

    async def _answer(self, activity_id: str, question_index, option_index) -> None:
        if not isinstance(question_index, int) or not isinstance(option_index, int):
            raise UserInputError("question_index and option_index must be integers")
        sheet = self._sheet(activity_id)
        correct = sheet.submit_answer(question_index, option_index)
        await self._send_to_browser({
            "type": "answer_result",
            "activity_id": activity_id,
            "question_index": question_index,
            "correct": correct,
            "correct_index": sheet.questions[question_index].correct_index,
            "answered": sheet.answered,
            "total": sheet.total,
        })

    async def _finish(self, activity_id: str) -> None:
        sheet = self._sheet(activity_id)
        outcome = await self.services.quiz.finish(
            self.uid, self.services.today(), activity_id, sheet.answers
        )
        del self.sheets[activity_id]
        self.session.log_activity("quiz_finished", activity_id=activity_id, score=outcome.score)
        await self._send_to_browser({
            "type": "quiz_finished",
            "activity_id": activity_id,
            **outcome.model_dump(mode="json"),
        })
        await self._send_overview()

    async def _request_retest(self, activity_id: str) -> None:
        questions = await self.services.quiz.request_retest(
            self.uid, self.services.today(), activity_id
        )
        self.sheets[activity_id] = AnswerSheet(questions)
        await self._send_to_browser({
            "type": "retest_ready",
            "activity_id": activity_id,
            "questions": [q.model_dump(mode="json") for q in questions],
        })

    async def _chat(self, message: str, mode: str | None) -> None:
        try:
            conversation_mode = ConversationMode(mode or ConversationMode.CONVERSATION)
        except ValueError:
            raise UserInputError(f"Unknown conversation mode: {mode}")
        reply = await self.services.conversation.reply_in_session(
            self.session, message, mode=conversation_mode
        )
        await self._send_to_browser({"type": "chat_reply", **reply.model_dump(mode="json")})

    async def _timed_start(self, activity_id: str) -> None:
        attempt = self.services.timed.begin(self.uid, activity_id)
        await self._send_to_browser({
            "type": "timed_started",
            "activity_id": activity_id,
            "kind": str(attempt.kind),
            "started_at": attempt.started_at.isoformat(),
            "required_minutes": self.services.timed.required_ms // 60000,
        })

    async def _timed_complete(self, activity_id: str) -> None:
        timed = self.services.timed
        attempt = timed.active_attempt(self.uid, activity_id)
        if attempt is None:
            raise UserInputError("This activity has not been started")
        progress = timed.progress(attempt)
        completed = await timed.complete(attempt, self.services.today())
        await self._send_to_browser({
            "type": "timed_result",
            "activity_id": activity_id,
            "completed": completed,
            "progress": progress,
        })
        if completed:
            await self._send_overview()

    async def _on_rollover(self, new_key: str) -> None:
        self.sheets.clear()
        overview = await self.services.board.overview(self.uid, new_key)
        await self._send_to_browser({"type": "day_changed", **overview.model_dump(mode="json")})

    async def _send_overview(self) -> None:
        overview = await self.services.board.overview(self.uid, self.services.today())
        await self._send_to_browser({"type": "overview", **overview.model_dump(mode="json")})

    async def _send_to_browser(self, data: dict) -> None:
        """Send a message to the browser WebSocket."""
        try:
            await self.browser_ws.send_json(data)
        except Exception:
            logger.warning("browser_send_failed", type=data.get("type"))


async def handle_browser_websocket(websocket: WebSocket, services: Services) -> None:
    """Handle a learner's browser WebSocket connection."""
    await websocket.accept()
    session_mgr: LearnerSessionManager | None = None

    try:
        while True:
            data = await websocket.receive_json()
            msg_type = data.get("type", "")

            try:
                if msg_type == "start_session":
                    if session_mgr:
                        await session_mgr.stop()
                        session_mgr = None
                    candidate = LearnerSessionManager(services, websocket)
                    await candidate.start(data.get("token", ""))
                    session_mgr = candidate

                elif msg_type == "stop_session":
                    if session_mgr:
                        await session_mgr.stop()
                        session_mgr = None

                elif session_mgr is None:
                    raise UserInputError("Start a session first")

                else:
                    await session_mgr.handle(data)
            except SpeakSmartError as e:
                logger.info("browser_message_rejected", type=msg_type, error=str(e))
                await websocket.send_json(error_message(e))

    except WebSocketDisconnect:
        logger.info("browser_disconnected")
    except Exception:
        logger.exception("websocket_handler_error")
    finally:
        if session_mgr:
            try:
                await session_mgr.stop()
            except Exception:
                logger.exception("session_stop_failed")


class AdminDashboardConnection:
    """Pushes regrouped learner data to one admin dashboard.

    Store listeners fire synchronously; each change is forwarded as a task
    so the listener never blocks on the socket.
    """

    def __init__(self, services: Services, websocket: WebSocket):
        self.services = services
        self.websocket = websocket
        self.view = services.new_admin_view()
        self._pending: set[asyncio.Task] = set()

    async def open(self) -> None:
        overview = await self.view.load_all()
        await self._send({"type": "admin_overview", **overview_payload(overview)})
        self.view.attach_all(self._on_user_change)

    def _on_user_change(self, view) -> None:
        task = asyncio.create_task(self._send({"type": "user_updated", **user_payload(view)}))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def handle(self, data: dict) -> None:
        msg_type = data.get("type", "")
        admin = self.view

        if msg_type == "reset_today":
            count = await admin.reset_user_today(data.get("uid", ""))
            await self._send({"type": "reset_done", "uid": data.get("uid"), "reset": count})
        elif msg_type == "clear_user":
            deleted = await admin.clear_user_data(
                data.get("uid", ""), confirmed=bool(data.get("confirm"))
            )
            await self._send({"type": "user_cleared", "uid": data.get("uid"), "deleted": deleted})
        elif msg_type == "mark_all_read":
            await admin.mark_all_read()
            await self._send_requests()
        elif msg_type in ("approve_reset", "deny_reset", "complete_reset"):
            await getattr(admin, msg_type)(data.get("request_id", ""))
            await self._send_requests()
        elif msg_type == "refresh":
            admin.close()
            await self.open()
        else:
            raise UserInputError(f"Unknown message type: {msg_type}")

    async def _send_requests(self) -> None:
        requests = await self.view.load_requests()
        await self._send({
            "type": "reset_requests",
            "requests": [request_payload(r) for r in requests],
            "unread_count": sum(1 for r in requests if not r.admin_read),
        })

    async def close(self) -> None:
        self.view.close()
        for task in list(self._pending):
            task.cancel()
        await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()

    async def _send(self, data: dict) -> None:
        try:
            await self.websocket.send_json(data)
        except Exception:
            logger.warning("admin_send_failed", type=data.get("type"))


async def handle_admin_websocket(websocket: WebSocket, services: Services) -> None:
    """Handle an admin dashboard connection.

    The first message must be ``{"type": "auth", "token", "admin_pass"}``.
    """
    await websocket.accept()
    connection: AdminDashboardConnection | None = None

    try:
        while True:
            data = await websocket.receive_json()
            msg_type = data.get("type", "")

            try:
                if msg_type == "auth":
                    identity = await services.accounts.current(data.get("token", ""))
                    services.admin_gate.check(identity, data.get("admin_pass"))
                    if connection:
                        await connection.close()
                    connection = AdminDashboardConnection(services, websocket)
                    logger.info("admin_connected", uid=identity.uid)
                    await connection.open()
                elif connection is None:
                    raise UserInputError("Authenticate first")
                else:
                    await connection.handle(data)
            except SpeakSmartError as e:
                logger.info("admin_message_rejected", type=msg_type, error=str(e))
                await websocket.send_json(error_message(e))

    except WebSocketDisconnect:
        logger.info("admin_disconnected")
    except Exception:
        logger.exception("admin_websocket_error")
    finally:
        if connection:
            await connection.close()
