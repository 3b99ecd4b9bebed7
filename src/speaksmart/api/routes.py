"""REST API routes for learners."""

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from speaksmart.activities.board import DailyOverview, OpenedActivity
from speaksmart.activities.stats import UserStats
from speaksmart.api.dependencies import Services, bearer_token, current_identity, get_services
from speaksmart.conversation.service import ChatReply
from speaksmart.errors import UserInputError
from speaksmart.identity.provider import AuthSession, Identity
from speaksmart.models.activity import AttemptOutcome, Question
from speaksmart.models.session import ConversationMode, Utterance
from speaksmart.models.user_profile import UserProfile

logger = structlog.get_logger()
router = APIRouter(prefix="/api")


class SignUpRequest(BaseModel):
    email: str
    password: str
    display_name: str | None = None


class SignInRequest(BaseModel):
    email: str
    password: str


class FederatedSignInRequest(BaseModel):
    credential: str
    provider_id: str = "google.com"


class SignedIn(BaseModel):
    session: AuthSession
    profile: UserProfile


class Me(BaseModel):
    identity: Identity
    is_admin: bool


class EmailRequest(BaseModel):
    email: str


class NewPasswordRequest(BaseModel):
    email: str
    password: str
    confirm_password: str


class FinishRequest(BaseModel):
    answers: dict[int, int] = Field(default_factory=dict)


class TimedResult(BaseModel):
    completed: bool
    progress: int


class LessonCompletion(BaseModel):
    score: float


class ChatRequest(BaseModel):
    message: str
    mode: ConversationMode = ConversationMode.CONVERSATION
    history: list[Utterance] = Field(default_factory=list)


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


# -- auth ---------------------------------------------------------------------

@router.post("/auth/signup")
async def sign_up(body: SignUpRequest, services: Services = Depends(get_services)) -> SignedIn:
    session, profile = await services.accounts.sign_up(body.email, body.password, body.display_name)
    return SignedIn(session=session, profile=profile)


@router.post("/auth/signin")
async def sign_in(body: SignInRequest, services: Services = Depends(get_services)) -> SignedIn:
    session, profile = await services.accounts.sign_in(body.email, body.password)
    return SignedIn(session=session, profile=profile)


@router.post("/auth/federated")
async def sign_in_federated(
    body: FederatedSignInRequest, services: Services = Depends(get_services)
) -> SignedIn:
    session, profile = await services.accounts.sign_in_federated(body.credential, body.provider_id)
    return SignedIn(session=session, profile=profile)


@router.post("/auth/signout")
async def sign_out(
    token: str = Depends(bearer_token), services: Services = Depends(get_services)
) -> dict:
    await services.accounts.sign_out(token)
    return {"status": "signed_out"}


@router.get("/auth/me")
async def me(
    identity: Identity = Depends(current_identity), services: Services = Depends(get_services)
) -> Me:
    return Me(identity=identity, is_admin=services.admin_gate.is_admin_email(identity.email))


# -- password reset -------------------------------------------------------------

@router.post("/password-reset/requests")
async def request_password_reset(
    body: EmailRequest, services: Services = Depends(get_services)
) -> dict:
    request_id = await services.password_reset.request_reset(body.email)
    return {
        "request_id": request_id,
        "message": "Password reset request sent to admin. You will be notified once approved.",
    }


@router.post("/password-reset/check")
async def check_password_reset(
    body: EmailRequest, services: Services = Depends(get_services)
) -> dict:
    return {"approved": await services.password_reset.is_approved(body.email)}


@router.post("/password-reset/submit")
async def submit_new_password(
    body: NewPasswordRequest, services: Services = Depends(get_services)
) -> dict:
    request_id = await services.password_reset.submit_new_password(
        body.email, body.password, body.confirm_password
    )
    return {"request_id": request_id, "status": "password_reset_sent"}


# -- activities -----------------------------------------------------------------

@router.get("/activities")
async def list_activities(
    identity: Identity = Depends(current_identity), services: Services = Depends(get_services)
) -> DailyOverview:
    return await services.board.overview(identity.uid, services.today())


@router.post("/activities/{activity_id}/open")
async def open_activity(
    activity_id: str,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> OpenedActivity:
    return await services.board.open(identity.uid, services.today(), activity_id)


@router.post("/activities/{activity_id}/finish")
async def finish_quiz(
    activity_id: str,
    body: FinishRequest,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> AttemptOutcome:
    return await services.quiz.finish(identity.uid, services.today(), activity_id, body.answers)


@router.post("/activities/{activity_id}/retest")
async def request_retest(
    activity_id: str,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> list[Question]:
    return await services.quiz.request_retest(identity.uid, services.today(), activity_id)


@router.post("/activities/{activity_id}/timed-complete")
async def complete_timed(
    activity_id: str,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> TimedResult:
    attempt = services.timed.active_attempt(identity.uid, activity_id)
    if attempt is None:
        raise UserInputError("This activity has not been started")
    progress = services.timed.progress(attempt)
    completed = await services.timed.complete(attempt, services.today())
    return TimedResult(completed=completed, progress=progress)


# -- profile --------------------------------------------------------------------

@router.get("/profile/stats")
async def profile_stats(
    identity: Identity = Depends(current_identity), services: Services = Depends(get_services)
) -> UserStats:
    stats = await services.stats.get_user_stats(identity.uid)
    return stats or UserStats()


@router.post("/profile/streak")
async def update_streak(
    identity: Identity = Depends(current_identity), services: Services = Depends(get_services)
) -> dict:
    return {"streak": await services.stats.update_streak(identity.uid)}


@router.post("/profile/lessons/{lesson_id}")
async def complete_lesson(
    lesson_id: str,
    body: LessonCompletion,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> dict:
    recorded = await services.stats.record_lesson_completion(identity.uid, lesson_id, body.score)
    return {"recorded": recorded}


# -- chat -----------------------------------------------------------------------

@router.post("/chat")
async def chat(
    body: ChatRequest,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> ChatReply:
    logger.debug("chat_request", uid=identity.uid, mode=body.mode)
    return await services.conversation.reply(body.message, mode=body.mode, history=body.history)
