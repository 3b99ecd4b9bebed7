"""Tests for the REST API."""

ADMIN = {"X-Admin-Pass": "letmein"}


def correct_answers(opened: dict, how_many: int) -> dict:
    questions = opened["quiz"]["questions"]
    return {str(i): q["correctIndex"] for i, q in enumerate(questions[:how_many])}


class TestHealthCheck:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestAuth:
    def test_sign_up_returns_token_and_profile(self, sign_up):
        _, body = sign_up()
        assert body["session"]["is_new_user"] is True
        assert body["profile"]["displayName"] == "Ana"
        assert body["profile"]["level"] == "Beginner"

    def test_sign_up_invalid_email(self, client):
        response = client.post("/api/auth/signup", json={"email": "nope", "password": "secret1"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Please enter a valid email address"

    def test_sign_in_wrong_password(self, client, sign_up):
        sign_up()
        response = client.post("/api/auth/signin", json={
            "email": "ana@example.com", "password": "wrong12",
        })
        assert response.status_code == 401

    def test_me(self, client, sign_up):
        headers, _ = sign_up()
        body = client.get("/api/auth/me", headers=headers).json()
        assert body["identity"]["email"] == "ana@example.com"
        assert body["is_admin"] is False

    def test_missing_token(self, client):
        assert client.get("/api/auth/me").status_code == 401

    def test_sign_out(self, client, sign_up):
        headers, _ = sign_up()
        assert client.post("/api/auth/signout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_federated(self, client):
        response = client.post("/api/auth/federated", json={"credential": "bo@example.com"})
        assert response.status_code == 200
        assert response.json()["profile"]["displayName"] == "English Learner"


class TestActivities:
    def test_overview_lists_catalog(self, client, sign_up):
        headers, _ = sign_up()
        body = client.get("/api/activities", headers=headers).json()
        assert body["date_key"] == "2024-03-15"
        assert body["total"] == 6
        assert body["completed_count"] == 0

    def test_quiz_two_attempts_then_limit(self, client, sign_up):
        headers, _ = sign_up()

        opened = client.post("/api/activities/daily-1/open", headers=headers).json()
        assert len(opened["quiz"]["questions"]) == 5
        first = client.post("/api/activities/daily-1/finish", headers=headers,
                            json={"answers": correct_answers(opened, 3)}).json()
        assert first["score"] == 60
        assert first["completed"] is False

        opened = client.post("/api/activities/daily-1/open", headers=headers).json()
        second = client.post("/api/activities/daily-1/finish", headers=headers,
                             json={"answers": correct_answers(opened, 5)}).json()
        assert second["score"] == 100
        assert second["achievement_title"] == "Grammar Mastery"

        response = client.post("/api/activities/daily-1/open", headers=headers)
        assert response.status_code == 409
        assert response.json()["activity_id"] == "daily-1"

        overview = client.get("/api/activities", headers=headers).json()
        assert overview["completed_count"] == 1
        assert overview["average_score"] == 80

    def test_retest(self, client, sign_up):
        headers, _ = sign_up()
        client.post("/api/activities/daily-2/open", headers=headers)
        client.post("/api/activities/daily-2/finish", headers=headers, json={"answers": {}})

        response = client.post("/api/activities/daily-2/retest", headers=headers)
        assert response.status_code == 200
        assert len(response.json()) == 5
        assert client.post("/api/activities/daily-2/retest", headers=headers).status_code == 409

    def test_finish_twice_without_retest(self, client, sign_up):
        headers, _ = sign_up()
        opened = client.post("/api/activities/daily-1/open", headers=headers).json()
        client.post("/api/activities/daily-1/finish", headers=headers, json={"answers": {}})

        again = client.post("/api/activities/daily-1/finish", headers=headers,
                            json={"answers": correct_answers(opened, 5)})

        assert again.status_code == 400
        overview = client.get("/api/activities", headers=headers).json()
        by_id = {s["activity"]["id"]: s for s in overview["activities"]}
        assert by_id["daily-1"]["attempt_scores"] == [0]

    def test_retest_before_first_attempt(self, client, sign_up):
        headers, _ = sign_up()
        response = client.post("/api/activities/daily-2/retest", headers=headers)
        assert response.status_code == 400

    def test_unknown_activity(self, client, sign_up):
        headers, _ = sign_up()
        assert client.post("/api/activities/daily-9/open", headers=headers).status_code == 400

    def test_timed_activity(self, client, sign_up, clock):
        headers, _ = sign_up()
        response = client.post("/api/activities/daily-5/timed-complete", headers=headers)
        assert response.status_code == 400

        opened = client.post("/api/activities/daily-5/open", headers=headers).json()
        assert opened["required_minutes"] == 20
        early = client.post("/api/activities/daily-5/timed-complete", headers=headers).json()
        assert early == {"completed": False, "progress": 0}

        clock.advance(minutes=20)
        done = client.post("/api/activities/daily-5/timed-complete", headers=headers).json()
        assert done == {"completed": True, "progress": 100}


class TestProfile:
    def test_streak_and_stats(self, client, sign_up):
        headers, _ = sign_up()
        assert client.post("/api/profile/streak", headers=headers).json() == {"streak": 1}
        assert client.post("/api/profile/streak", headers=headers).json() == {"streak": 1}
        stats = client.get("/api/profile/stats", headers=headers).json()
        assert stats["streak"] == 1
        assert stats["best_streak"] == 1

    def test_lesson_completion(self, client, sign_up):
        headers, _ = sign_up()
        response = client.post("/api/profile/lessons/lesson-1", headers=headers,
                               json={"score": 85})
        assert response.json() == {"recorded": True}
        assert client.get("/api/profile/stats", headers=headers).json()["total_lessons"] == 1


class TestChat:
    def test_reply(self, client, sign_up):
        headers, _ = sign_up()
        body = client.post("/api/chat", headers=headers, json={
            "message": "I went to the park yesterday.", "mode": "voice",
        }).json()
        assert body["response"] == "That sounds great! Tell me more."
        assert body["fallback"] is False
        assert body["grammar_score"] == 100

    def test_empty_message(self, client, sign_up):
        headers, _ = sign_up()
        assert client.post("/api/chat", headers=headers, json={"message": " "}).status_code == 400


class TestPasswordReset:
    def test_full_flow(self, client, sign_up, identity):
        sign_up()
        admin_headers, _ = sign_up("admin@example.com", name="Admin")

        request_id = client.post("/api/password-reset/requests",
                                 json={"email": "ana@example.com"}).json()["request_id"]
        check = client.post("/api/password-reset/check", json={"email": "ana@example.com"})
        assert check.json() == {"approved": False}

        approve = client.post(f"/api/admin/reset-requests/{request_id}/approve",
                              headers={**admin_headers, **ADMIN})
        assert approve.status_code == 200
        assert client.post("/api/password-reset/check",
                           json={"email": "ana@example.com"}).json() == {"approved": True}

        submitted = client.post("/api/password-reset/submit", json={
            "email": "ana@example.com", "password": "newpass1", "confirm_password": "newpass1",
        })
        assert submitted.json() == {"request_id": request_id, "status": "password_reset_sent"}
        assert identity.sent_reset_emails == ["ana@example.com"]

    def test_unknown_email(self, client):
        response = client.post("/api/password-reset/requests", json={"email": "x@example.com"})
        assert response.status_code == 400


class TestAdmin:
    def test_requires_allow_listed_email(self, client, sign_up):
        headers, _ = sign_up()
        response = client.get("/api/admin/overview", headers={**headers, **ADMIN})
        assert response.status_code == 403

    def test_requires_admin_password(self, client, sign_up):
        headers, _ = sign_up("admin@example.com")
        assert client.get("/api/admin/overview", headers=headers).status_code == 403

    def test_overview(self, client, sign_up):
        learner, _ = sign_up()
        admin, _ = sign_up("admin@example.com")
        client.post("/api/activities/daily-1/open", headers=learner)
        client.post("/api/activities/daily-1/finish", headers=learner, json={"answers": {}})
        client.post("/api/password-reset/requests", json={"email": "ana@example.com"})

        body = client.get("/api/admin/overview", headers={**admin, **ADMIN}).json()

        assert body["unread_count"] == 1
        assert "new_password_to_set" not in body["requests"][0]
        ana = next(u for u in body["users"] if u["profile"]["email"] == "ana@example.com")
        assert ana["matrix"]["2024-03-15"]["daily-1"]["attempts"] == 1

    def test_clear_user_data_requires_confirm(self, client, sign_up):
        learner, body = sign_up()
        admin, _ = sign_up("admin@example.com")
        uid = body["session"]["identity"]["uid"]
        client.post("/api/activities/daily-1/open", headers=learner)

        url = f"/api/admin/users/{uid}/activities"
        assert client.delete(url, headers={**admin, **ADMIN}).status_code == 409
        response = client.delete(url, params={"confirm": True}, headers={**admin, **ADMIN})
        assert response.json() == {"deleted": 1}

    def test_reset_today(self, client, sign_up):
        learner, body = sign_up()
        admin, _ = sign_up("admin@example.com")
        uid = body["session"]["identity"]["uid"]
        client.post("/api/activities/daily-1/open", headers=learner)

        response = client.post(f"/api/admin/users/{uid}/reset-today", headers={**admin, **ADMIN})
        assert response.json() == {"reset": 1}

    def test_approve_missing_request(self, client, sign_up):
        admin, _ = sign_up("admin@example.com")
        response = client.post("/api/admin/reset-requests/missing/approve",
                               headers={**admin, **ADMIN})
        assert response.status_code == 404
