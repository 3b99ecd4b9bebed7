"""Service wiring and FastAPI dependencies."""

import functools
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from fastapi import Depends, Header

from speaksmart.activities.board import ActivityBoard
from speaksmart.activities.date_keys import date_key
from speaksmart.activities.lifecycle import QuizAttemptLifecycle, TimedActivityLifecycle
from speaksmart.activities.questions import QuestionGenerator
from speaksmart.activities.stats import ActivityStatsAggregator
from speaksmart.admin.aggregation import AdminAggregationView
from speaksmart.config import Settings, get_settings
from speaksmart.conversation.chain import ProviderChain
from speaksmart.conversation.providers import ChatProvider, GeminiChatProvider, OpenAIChatProvider
from speaksmart.conversation.service import ConversationService
from speaksmart.errors import AuthError
from speaksmart.identity.accounts import AccountService, AdminGate
from speaksmart.identity.firebase import FirebaseIdentityProvider
from speaksmart.identity.local import LocalIdentityProvider
from speaksmart.identity.password_reset import PasswordResetFlow
from speaksmart.identity.provider import Identity, IdentityProvider
from speaksmart.storage.document_store import DocumentStore
from speaksmart.storage.firestore_store import FirestoreDocumentStore
from speaksmart.storage.local_store import LocalDocumentStore

logger = structlog.get_logger()


@dataclass
class Services:
    """Everything a request handler needs, built once per process."""

    store: DocumentStore
    identity: IdentityProvider
    chain: ProviderChain
    admin_gate: AdminGate
    clock: Callable[[], datetime] = datetime.now
    question_count: int = 5
    timed_required_ms: int = 20 * 60 * 1000
    generator: QuestionGenerator = field(init=False)
    quiz: QuizAttemptLifecycle = field(init=False)
    timed: TimedActivityLifecycle = field(init=False)
    stats: ActivityStatsAggregator = field(init=False)
    board: ActivityBoard = field(init=False)
    accounts: AccountService = field(init=False)
    password_reset: PasswordResetFlow = field(init=False)
    conversation: ConversationService = field(init=False)
    admin: AdminAggregationView = field(init=False)

    def __post_init__(self) -> None:
        self.generator = QuestionGenerator(self.chain, count=self.question_count)
        self.quiz = QuizAttemptLifecycle(self.store, self.generator, clock=self.clock)
        self.timed = TimedActivityLifecycle(
            self.store, required_ms=self.timed_required_ms, clock=self.clock
        )
        self.stats = ActivityStatsAggregator(self.store, clock=self.clock)
        self.board = ActivityBoard(self.quiz, self.timed, self.stats)
        self.accounts = AccountService(self.identity, self.store)
        self.password_reset = PasswordResetFlow(self.store, self.identity)
        self.conversation = ConversationService(self.chain)
        self.admin = self.new_admin_view()

    def today(self) -> str:
        return date_key(self.clock())

    def new_admin_view(self) -> AdminAggregationView:
        """A view with its own live subscriptions (one per admin connection)."""
        return AdminAggregationView(self.store, self.quiz, clock=self.clock)

    async def aclose(self) -> None:
        self.admin.close()
        await self.chain.aclose()
        await self.identity.aclose()


def build_providers(settings: Settings) -> list[ChatProvider]:
    """OpenAI first, then Gemini; providers without a key are skipped."""
    providers: list[ChatProvider] = []
    if settings.openai_api_key:
        providers.append(OpenAIChatProvider(settings.openai_api_key, model=settings.openai_model))
    if settings.gemini_api_key:
        providers.append(GeminiChatProvider(
            settings.gemini_api_key,
            model=settings.gemini_model,
            api_version=settings.gemini_api_version,
        ))
    if not providers:
        logger.warning("no_ai_providers_configured")
    return providers


def build_store(settings: Settings) -> DocumentStore:
    if settings.store_backend == "firestore":
        return FirestoreDocumentStore(project_id=settings.firestore_project_id)
    return LocalDocumentStore(path=settings.store_path)


def build_identity(settings: Settings) -> IdentityProvider:
    if settings.identity_backend == "firebase":
        if not settings.firebase_api_key:
            raise ValueError("FIREBASE_API_KEY is required for the firebase identity backend")
        return FirebaseIdentityProvider(settings.firebase_api_key)
    return LocalIdentityProvider()


def build_services(settings: Settings) -> Services:
    services = Services(
        store=build_store(settings),
        identity=build_identity(settings),
        chain=ProviderChain(build_providers(settings)),
        admin_gate=AdminGate(settings.admin_email_list, settings.admin_pass),
        question_count=settings.quiz_question_count,
        timed_required_ms=settings.timed_required_ms,
    )
    logger.info(
        "services_built",
        store=settings.store_backend,
        identity=settings.identity_backend,
        providers=[p.name for p in services.chain.providers],
    )
    return services


@functools.lru_cache
def get_services() -> Services:
    return build_services(get_settings())


def bearer_token(authorization: str | None = Header(default=None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthError("Please sign in.", code="missing-token")
    return authorization[7:].strip()


async def current_identity(
    token: str = Depends(bearer_token),
    services: Services = Depends(get_services),
) -> Identity:
    return await services.accounts.current(token)


async def admin_identity(
    identity: Identity = Depends(current_identity),
    x_admin_pass: str | None = Header(default=None),
    services: Services = Depends(get_services),
) -> Identity:
    services.admin_gate.check(identity, x_admin_pass)
    return identity
