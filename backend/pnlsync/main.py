"""FastAPI application entrypoint.

Configures CORS, includes routers, maps service errors to JSON responses,
and exposes a healthcheck endpoint.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .deps import get_settings
from .errors import (
    AuthExchangeError,
    ClientNotFoundError,
    NotAuthenticatedError,
    NotProvisionedError,
    PnlSyncError,
    ProviderUnavailableError,
    ProvisionError,
    RefreshError,
    SyncInProgressError,
    SyncWriteError,
)
from .routers import cron as cron_router
from .routers import google_oauth as google_oauth_router
from .routers import google_sheets as google_sheets_router
from .schemas import ErrorResponse, HealthResponse
from .telemetry import init_observability

# HTTP status per error kind; anything unlisted is a 500
ERROR_STATUS_CODES = {
    ClientNotFoundError: 404,
    NotAuthenticatedError: 401,
    RefreshError: 401,
    AuthExchangeError: 400,
    NotProvisionedError: 409,
    SyncInProgressError: 409,
    ProvisionError: 502,
    SyncWriteError: 502,
    ProviderUnavailableError: 503,
}


def status_code_for(exc: PnlSyncError) -> int:
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return code
    return 500


async def pnl_sync_error_handler(request: Request, exc: PnlSyncError) -> JSONResponse:
    code = status_code_for(exc)
    logger.info("[API] %s %s -> %s %s", request.method, request.url.path, code, exc.kind)
    return JSONResponse(
        status_code=code,
        content=ErrorResponse(error=exc.kind, message=exc.message).model_dump(),
    )


def create_app() -> FastAPI:
    # Sentry must be initialized before the app so the FastAPI integration hooks in
    observability = init_observability()
    logger.info("[TELEMETRY] %s", observability)

    app = FastAPI(
        title="pnlsync API",
        description="""
        Client P&L report sync.

        - Google OAuth connect flow per client
        - Report spreadsheet provisioning on the client's Drive
        - Manual and scheduled (cron) clear-and-rewrite syncs
        """,
        version="1.0.0",
    )

    settings = get_settings()

    # BACKEND_CORS_ORIGINS is a comma-separated list
    allowed_origins = [origin.strip() for origin in settings.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]
    logger.info(f"[CORS] Allowed origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PnlSyncError, pnl_sync_error_handler)

    app.include_router(google_oauth_router.router)
    app.include_router(google_sheets_router.router)
    app.include_router(cron_router.router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health() -> HealthResponse:
        return HealthResponse(status="ok")

    return app


app = create_app()
