"""Shared fixtures: an in-memory store, a settable clock and seeded learners."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from speaksmart.activities.questions import QuestionGenerator
from speaksmart.api.dependencies import Services, get_services
from speaksmart.conversation.chain import ProviderChain
from speaksmart.identity.accounts import AdminGate
from speaksmart.identity.local import LocalIdentityProvider
from speaksmart.main import _ws_connection_times, app
from speaksmart.storage.local_store import LocalDocumentStore


class Clock:
    """Callable clock that tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock(datetime(2024, 3, 15, 10, 30))


@pytest.fixture
def store(clock):
    return LocalDocumentStore(clock=clock)


@pytest.fixture
def offline_generator():
    # An empty chain always fails, so every set comes from the local generators.
    return QuestionGenerator(ProviderChain([]), count=5)


@pytest.fixture
def identity():
    return LocalIdentityProvider()


@pytest.fixture
def admin_gate():
    return AdminGate(["admin@example.com"], admin_pass="letmein")


@pytest.fixture
def make_profile(store):
    """Write a learner profile document straight into the store."""

    async def make(uid: str = "u1", **fields) -> None:
        data = {
            "uid": uid,
            "displayName": "Learner",
            "email": f"{uid}@example.com",
            "level": "Beginner",
            "streak": 0,
            "totalLessons": 0,
            "hoursLearned": 0,
        }
        data.update(fields)
        await store.set(f"users/{uid}", data)

    return make


@pytest.fixture
def chat_chain():
    chain = MagicMock()
    chain.providers = []
    chain.complete = AsyncMock(return_value="That sounds great! Tell me more.")
    chain.aclose = AsyncMock()
    return chain


@pytest.fixture
def services(store, identity, chat_chain, admin_gate, clock):
    return Services(
        store=store,
        identity=identity,
        chain=chat_chain,
        admin_gate=admin_gate,
        clock=clock,
        question_count=5,
        timed_required_ms=20 * 60 * 1000,
    )


@pytest.fixture
def client(services):
    _ws_connection_times.clear()
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def sign_up(client):
    """Create an account through the API and return its auth headers."""

    def make(email: str = "ana@example.com", password: str = "secret1", name: str = "Ana"):
        response = client.post("/api/auth/signup", json={
            "email": email, "password": password, "display_name": name,
        })
        assert response.status_code == 200, response.text
        body = response.json()
        return {"Authorization": f"Bearer {body['session']['token']}"}, body

    return make
