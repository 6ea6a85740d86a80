# parkhub/main.py
"""
FastAPI application entry point.
Includes security middleware, global error handlers, and all routers.

Long-lived handles (database, notification emitter, change feed, expiry
sweep) are built in create_app(), opened on startup and closed on shutdown.
"""

from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from parkhub.config import Settings, settings as default_settings
from parkhub.database import Database
from parkhub.exceptions import (
    InvalidTransitionRequest, PreconditionFailed, ProvisioningConflict, SpaceError, SpaceNotFound,
    StoreUnavailable,
)
from parkhub.routers import admin, health, notifications, spaces, stats, stream
from parkhub.services.change_feed import SpaceChangeFeed
from parkhub.services.expiry_scheduler import ReservationExpiryScheduler
from parkhub.services.notification_emitter import (
    DatabaseNotificationSink, NotificationEmitter, WebhookNotificationSink,
)
from parkhub.services.provisioning_service import provision_spaces
from parkhub.services.space_store import SpaceStore
from parkhub.utils.logger import get_logger
import time

logger = get_logger(__name__)

OPEN_PATHS = {"/api/v1/health", "/docs", "/redoc", "/openapi.json"}


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional lightweight API key auth.
    Set API_KEY in .env. Leave empty to disable auth.
    """
    def __init__(self, app, api_key: str):
        super().__init__(app)
        self.api_key = api_key

    async def dispatch(self, request: Request, call_next):
        if request.url.path in OPEN_PATHS:
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != self.api_key:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)


def _error_body(exc: SpaceError) -> dict:
    return {"detail": exc.message, "code": exc.code, "space_number": exc.space_number}


def _register_exception_handlers(app: FastAPI):
    @app.exception_handler(SpaceNotFound)
    async def space_not_found_handler(request: Request, exc: SpaceNotFound):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=_error_body(exc))

    @app.exception_handler(PreconditionFailed)
    async def precondition_failed_handler(request: Request, exc: PreconditionFailed):
        logger.info(f"[SPACE] Rejected {request.method} {request.url.path}: {exc.code} ({exc.message})")
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=_error_body(exc))

    @app.exception_handler(ProvisioningConflict)
    async def provisioning_conflict_handler(request: Request, exc: ProvisioningConflict):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=_error_body(exc))

    @app.exception_handler(InvalidTransitionRequest)
    async def invalid_request_handler(request: Request, exc: InvalidTransitionRequest):
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_body(exc))

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        # Nothing was applied; the caller may retry the same request
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                            content=_error_body(exc), headers={"Retry-After": "5"})

    # ── Global Exception Handler ─────────────────────────────────────────────
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings

    app = FastAPI(
        title="ParkHub Space Lifecycle API",
        description="Parking space state machine, reservation expiry and notifications.",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    database = Database(settings.DATABASE_URL, timeout_seconds=settings.STORE_TIMEOUT_SECONDS)
    sinks = [DatabaseNotificationSink(database)]
    if settings.NOTIFICATION_WEBHOOK_URL:
        sinks.append(WebhookNotificationSink(settings.NOTIFICATION_WEBHOOK_URL,
                                             timeout=settings.NOTIFICATION_TIMEOUT_SECONDS))
    emitter = NotificationEmitter(sinks)
    change_feed = SpaceChangeFeed()

    app.state.settings = settings
    app.state.database = database
    app.state.emitter = emitter
    app.state.change_feed = change_feed
    app.state.scheduler = ReservationExpiryScheduler(
        database, emitter, change_feed,
        interval_seconds=settings.SWEEP_INTERVAL_SECONDS,
        batch_size=settings.SWEEP_BATCH_SIZE,
    )

    # ── CORS (dashboard may be served from another origin) ──────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],   # Restrict to dashboard origin in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.API_KEY:
        app.add_middleware(APIKeyMiddleware, api_key=settings.API_KEY)

    # ── Request Timing Middleware ────────────────────────────────────────────
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration = round((time.time() - start) * 1000, 2)
        logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
        return response

    _register_exception_handlers(app)

    # ── Routers ──────────────────────────────────────────────────────────────
    # stream first: /spaces/stream must win over /spaces/{number}
    app.include_router(stream.router,        prefix="/api/v1", tags=["📡 Live Updates"])
    app.include_router(spaces.router,        prefix="/api/v1", tags=["🅿️  Spaces"])
    app.include_router(stats.router,         prefix="/api/v1", tags=["📊 Stats"])
    app.include_router(notifications.router, prefix="/api/v1", tags=["🔔 Notifications"])
    app.include_router(admin.router,         prefix="/api/v1", tags=["🛠  Admin"])
    app.include_router(health.router,        prefix="/api/v1", tags=["💚 Health"])

    # ── Startup ───────────────────────────────────────────────────────────────
    @app.on_event("startup")
    async def startup():
        logger.info("🚀 ParkHub backend starting up...")
        database.open()
        database.create_tables()
        logger.info("✅ Database tables ready")

        if settings.AUTO_PROVISION:
            db = database.session()
            try:
                provision_spaces(SpaceStore(db), settings.TOTAL_SPACES, settings.ZONE_LIST,
                                 truck_ratio=settings.PROVISION_TRUCK_RATIO,
                                 motorcycle_ratio=settings.PROVISION_MOTORCYCLE_RATIO)
            except ProvisioningConflict as e:
                logger.warning(f"[PROVISION] Skipped at startup: {e}")
            finally:
                db.close()

        if settings.SWEEP_ENABLED:
            app.state.scheduler.start()
        logger.info(f"🌐 Listening on http://{settings.BACKEND_IP}:{settings.BACKEND_PORT}")
        logger.info("📖 API docs at /docs")

    @app.on_event("shutdown")
    async def shutdown():
        logger.info("🛑 ParkHub backend shutting down...")
        await app.state.scheduler.stop()
        emitter.close()
        database.close()

    return app


app = create_app()
