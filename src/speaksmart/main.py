"""FastAPI application entry point."""

import logging
import os
import time
from collections import defaultdict
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from speaksmart.api.admin import router as admin_router
from speaksmart.api.dependencies import Services, get_services
from speaksmart.api.routes import router
from speaksmart.api.websocket import handle_admin_websocket, handle_browser_websocket
from speaksmart.config import get_settings
from speaksmart.errors import (
    AuthError,
    ConfirmationRequired,
    DailyLimitReached,
    DocumentNotFoundError,
    GenerationFailed,
    QuotaOrRateLimitError,
    SpeakSmartError,
    StoreUnavailableError,
    UserInputError,
)

# Simple in-memory rate limiter for WebSocket connections
_ws_connection_times: dict[str, list[float]] = defaultdict(list)
_WS_RATE_LIMIT = 10  # max WS connections per IP per window
_WS_RATE_WINDOW = 60  # seconds

# Configure structlog based on environment
is_production = os.getenv("ENV", "development").lower() == "production"

if is_production:
    # Production: JSON format for machine parsing
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
else:
    # Development: console format for human readability
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

logger = structlog.get_logger()
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if get_services.cache_info().currsize:
        await get_services().aclose()


app = FastAPI(title="SpeakSmart", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)
app.include_router(admin_router)


def _error(status_code: int, exc: SpeakSmartError, **extra) -> JSONResponse:
    return JSONResponse(
        {"error": type(exc).__name__, "detail": str(exc), **extra},
        status_code=status_code,
    )


@app.exception_handler(UserInputError)
async def user_input_error_handler(request: Request, exc: UserInputError) -> JSONResponse:
    return _error(400, exc)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    status_code = 403 if exc.code in ("not-admin", "bad-admin-pass") else 401
    return _error(status_code, exc, code=exc.code)


@app.exception_handler(DailyLimitReached)
async def daily_limit_handler(request: Request, exc: DailyLimitReached) -> JSONResponse:
    return _error(409, exc, activity_id=exc.activity_id, date_key=exc.date_key)


@app.exception_handler(ConfirmationRequired)
async def confirmation_handler(request: Request, exc: ConfirmationRequired) -> JSONResponse:
    return _error(409, exc)


@app.exception_handler(DocumentNotFoundError)
async def not_found_handler(request: Request, exc: DocumentNotFoundError) -> JSONResponse:
    return _error(404, exc)


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error("store_unavailable", path=request.url.path, error=str(exc))
    return _error(503, exc)


@app.exception_handler(QuotaOrRateLimitError)
async def rate_limited_handler(request: Request, exc: QuotaOrRateLimitError) -> JSONResponse:
    return _error(429, exc)


@app.exception_handler(GenerationFailed)
async def generation_failed_handler(request: Request, exc: GenerationFailed) -> JSONResponse:
    logger.error("generation_failed", path=request.url.path, error=str(exc))
    return _error(502, exc)


def _rate_limited(websocket: WebSocket) -> bool:
    client_ip = websocket.client.host if websocket.client else "unknown"
    now = time.time()
    times = _ws_connection_times[client_ip]
    times[:] = [t for t in times if now - t < _WS_RATE_WINDOW]
    if len(times) >= _WS_RATE_LIMIT:
        logger.warning("ws_rate_limited", client_ip=client_ip)
        return True
    times.append(now)
    return False


@app.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket, services: Services = Depends(get_services)
) -> None:
    """Learner WebSocket endpoint with per-IP rate limiting."""
    if _rate_limited(websocket):
        await websocket.close(code=1008, reason="Rate limit exceeded")
        return
    await handle_browser_websocket(websocket, services)


@app.websocket("/ws/admin")
async def admin_websocket_endpoint(
    websocket: WebSocket, services: Services = Depends(get_services)
) -> None:
    """Admin dashboard WebSocket endpoint with per-IP rate limiting."""
    if _rate_limited(websocket):
        await websocket.close(code=1008, reason="Rate limit exceeded")
        return
    await handle_admin_websocket(websocket, services)


def main() -> None:
    """Run the application."""
    uvicorn.run(
        "speaksmart.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
