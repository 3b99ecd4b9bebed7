"""Admin dashboard routes."""

import structlog
from fastapi import APIRouter, Depends

from speaksmart.admin.aggregation import AdminOverview, AdminUserView, score_matrix
from speaksmart.api.dependencies import Services, admin_identity, get_services
from speaksmart.identity.provider import Identity
from speaksmart.models.password_reset import PasswordResetRequest

logger = structlog.get_logger()
router = APIRouter(prefix="/api/admin", dependencies=[Depends(admin_identity)])


def user_payload(view: AdminUserView) -> dict:
    """A learner's grouped records plus the per-day task table."""
    return {
        **view.model_dump(mode="json"),
        "matrix": {
            day: {task: cell.model_dump() for task, cell in cells.items()}
            for day, cells in score_matrix(view).items()
        },
    }


def request_payload(request: PasswordResetRequest) -> dict:
    return {"id": request.id, **request.model_dump(mode="json", exclude={"new_password_to_set"})}


def overview_payload(overview: AdminOverview) -> dict:
    return {
        "users": [user_payload(view) for view in overview.users],
        "requests": [request_payload(r) for r in overview.requests],
        "unread_count": overview.unread_count,
    }


@router.get("/overview")
async def overview(services: Services = Depends(get_services)) -> dict:
    """All learners with their activity history, plus reset requests."""
    return overview_payload(await services.admin.load_all())


@router.post("/users/{uid}/reset-today")
async def reset_user_today(
    uid: str,
    services: Services = Depends(get_services),
    admin: Identity = Depends(admin_identity),
) -> dict:
    count = await services.admin.reset_user_today(uid)
    logger.info("admin_reset_today", admin=admin.uid, uid=uid, count=count)
    return {"reset": count}


@router.delete("/users/{uid}/activities")
async def clear_user_data(
    uid: str,
    confirm: bool = False,
    services: Services = Depends(get_services),
) -> dict:
    return {"deleted": await services.admin.clear_user_data(uid, confirmed=confirm)}


@router.post("/reset-requests/mark-read")
async def mark_all_read(services: Services = Depends(get_services)) -> dict:
    return {"marked": await services.admin.mark_all_read()}


@router.post("/reset-requests/{request_id}/approve")
async def approve_reset(request_id: str, services: Services = Depends(get_services)) -> dict:
    await services.admin.approve_reset(request_id)
    return {"status": "approved"}


@router.post("/reset-requests/{request_id}/deny")
async def deny_reset(request_id: str, services: Services = Depends(get_services)) -> dict:
    await services.admin.deny_reset(request_id)
    return {"status": "denied"}


@router.post("/reset-requests/{request_id}/complete")
async def complete_reset(request_id: str, services: Services = Depends(get_services)) -> dict:
    await services.admin.complete_reset(request_id)
    return {"status": "completed"}
