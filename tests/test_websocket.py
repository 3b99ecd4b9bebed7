"""Tests for the learner and admin WebSocket handlers."""

import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import WebSocket, WebSocketDisconnect

from speaksmart.api.websocket import LearnerSessionManager, error_message, handle_browser_websocket
from speaksmart.errors import DailyLimitReached, UserInputError
from speaksmart.main import _WS_RATE_LIMIT, _ws_connection_times

ADMIN_PASS = "letmein"


def receive_until(ws, msg_type, limit=20):
    for _ in range(limit):
        message = ws.receive_json()
        if message["type"] == msg_type:
            return message
    raise AssertionError(f"no {msg_type} message received")


def start(ws, token):
    ws.send_json({"type": "start_session", "token": token})
    state = receive_until(ws, "session_state")
    overview = receive_until(ws, "overview")
    return state, overview


class TestErrorMessage:
    def test_daily_limit_carries_activity(self):
        message = error_message(DailyLimitReached("daily-1", "2024-03-15"))
        assert message["type"] == "error"
        assert message["error"] == "DailyLimitReached"
        assert message["activity_id"] == "daily-1"

    def test_plain_error(self):
        assert error_message(UserInputError("bad")) == {
            "type": "error", "error": "UserInputError", "message": "bad",
        }


class TestLearnerSession:
    def test_start_and_stop(self, client, sign_up):
        _, body = sign_up()
        with client.websocket_connect("/ws") as ws:
            state, overview = start(ws, body["session"]["token"])
            assert state["status"] == "active"
            assert state["streak"] == 1
            assert overview["total"] == 6

            ws.send_json({"type": "stop_session"})
            stopped = receive_until(ws, "session_state")
            assert stopped["status"] == "completed"

    def test_bad_token(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "start_session", "token": "nope"})
            message = ws.receive_json()
            assert message["type"] == "error"
            assert message["error"] == "AuthError"

    def test_messages_need_a_session(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "chat", "message": "hi"})
            assert ws.receive_json()["message"] == "Start a session first"

    def test_quiz_flow(self, client, sign_up):
        _, body = sign_up()
        with client.websocket_connect("/ws") as ws:
            start(ws, body["session"]["token"])

            ws.send_json({"type": "open_activity", "activity_id": "daily-1"})
            opened = receive_until(ws, "activity_opened")
            questions = opened["quiz"]["questions"]
            assert len(questions) == 5

            for index, question in enumerate(questions[:3]):
                ws.send_json({"type": "answer", "activity_id": "daily-1",
                              "question_index": index, "option_index": question["correct_index"]})
                result = receive_until(ws, "answer_result")
                assert result["correct"] is True
                assert result["answered"] == index + 1

            ws.send_json({"type": "answer", "activity_id": "daily-1",
                          "question_index": 0, "option_index": 0})
            assert receive_until(ws, "error")["message"] == "Question already answered"

            ws.send_json({"type": "finish", "activity_id": "daily-1"})
            finished = receive_until(ws, "quiz_finished")
            assert finished["score"] == 60
            overview = receive_until(ws, "overview")
            by_id = {s["activity"]["id"]: s for s in overview["activities"]}
            assert by_id["daily-1"]["attempt_scores"] == [60]

    def test_chat(self, client, sign_up, chat_chain):
        _, body = sign_up()
        with client.websocket_connect("/ws") as ws:
            start(ws, body["session"]["token"])
            ws.send_json({"type": "chat", "message": "Hello there", "mode": "conversation"})
            first = receive_until(ws, "chat_reply")
            ws.send_json({"type": "chat", "message": "How are you?"})
            receive_until(ws, "chat_reply")

        assert first["response"] == "That sounds great! Tell me more."
        history = chat_chain.complete.call_args.args[0]
        assert [m["role"] for m in history] == ["system", "user", "assistant", "user"]

    def test_unknown_mode(self, client, sign_up):
        _, body = sign_up()
        with client.websocket_connect("/ws") as ws:
            start(ws, body["session"]["token"])
            ws.send_json({"type": "chat", "message": "Hello", "mode": "shouting"})
            assert receive_until(ws, "error")["error"] == "UserInputError"

    def test_timed_activity(self, client, sign_up, clock):
        _, body = sign_up()
        with client.websocket_connect("/ws") as ws:
            start(ws, body["session"]["token"])
            ws.send_json({"type": "timed_start", "activity_id": "daily-6"})
            started = receive_until(ws, "timed_started")
            assert started["required_minutes"] == 20

            ws.send_json({"type": "timed_complete", "activity_id": "daily-6"})
            assert receive_until(ws, "timed_result")["completed"] is False

            clock.advance(minutes=25)
            ws.send_json({"type": "timed_complete", "activity_id": "daily-6"})
            assert receive_until(ws, "timed_result")["completed"] is True

    def test_rate_limit(self, client):
        _ws_connection_times["testclient"] = [time.time()] * _WS_RATE_LIMIT
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect("/ws"):
                pass
        assert excinfo.value.code == 1008


class TestRollover:
    async def test_day_change_pushes_fresh_overview(self, services, make_profile):
        await make_profile("u1")
        ws = AsyncMock(spec=WebSocket)
        manager = LearnerSessionManager(services, ws)
        manager.identity = MagicMock(uid="u1")
        manager.sheets["daily-1"] = MagicMock()

        await manager._on_rollover("2024-03-16")

        assert manager.sheets == {}
        message = ws.send_json.call_args.args[0]
        assert message["type"] == "day_changed"
        assert message["date_key"] == "2024-03-16"


class TestHandlerCleanup:
    async def test_rejected_start_then_disconnect(self, services):
        ws = AsyncMock(spec=WebSocket)
        ws.receive_json = AsyncMock(side_effect=[
            {"type": "start_session", "token": "t"},
            WebSocketDisconnect(),
        ])
        services.accounts.current = AsyncMock(side_effect=UserInputError("bad token"))

        await handle_browser_websocket(ws, services)

        ws.accept.assert_awaited_once()
        sent = ws.send_json.call_args.args[0]
        assert sent["type"] == "error"


class TestAdminSocket:
    def test_requires_auth_first(self, client):
        with client.websocket_connect("/ws/admin") as ws:
            ws.send_json({"type": "mark_all_read"})
            assert ws.receive_json()["message"] == "Authenticate first"

    def test_non_admin_rejected(self, client, sign_up):
        _, body = sign_up()
        with client.websocket_connect("/ws/admin") as ws:
            ws.send_json({"type": "auth", "token": body["session"]["token"],
                          "admin_pass": ADMIN_PASS})
            message = ws.receive_json()
            assert message["error"] == "AuthError"

    def test_overview_and_live_updates(self, client, sign_up):
        learner_headers, _ = sign_up()
        _, admin = sign_up("admin@example.com", name="Admin")
        client.post("/api/password-reset/requests", json={"email": "ana@example.com"})

        with client.websocket_connect("/ws/admin") as ws:
            ws.send_json({"type": "auth", "token": admin["session"]["token"],
                          "admin_pass": ADMIN_PASS})
            overview = receive_until(ws, "admin_overview")
            assert len(overview["users"]) == 2
            assert overview["unread_count"] == 1

            client.post("/api/activities/daily-1/open", headers=learner_headers)
            for _ in range(5):
                update = receive_until(ws, "user_updated")
                if update["dates"]:
                    break
            assert update["matrix"]["2024-03-15"]["daily-1"]["attempts"] == 1

            ws.send_json({"type": "mark_all_read"})
            requests = receive_until(ws, "reset_requests")
            assert requests["unread_count"] == 0

            ws.send_json({"type": "clear_user", "uid": update["uid"]})
            assert receive_until(ws, "error")["error"] == "ConfirmationRequired"
