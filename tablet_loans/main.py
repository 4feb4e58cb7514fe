import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from tablet_loans.core.config import settings
from tablet_loans.core.logging import bind_request_id, get_logger, log_fields, setup_logging
from tablet_loans.db.session import AsyncSessionLocal, engine
from tablet_loans.db.models import Base
from tablet_loans.services.auth import ensure_built_in_admin, cleanup_expired_tokens
from tablet_loans.api.v1.endpoints import (
    auth,
    borrowers,
    dashboard,
    devices,
    loans,
    loss_reports,
)

logger = get_logger("tablet_loans.main")

API_PREFIX = "/api/v1"
REQUEST_ID_HEADER = "X-Request-ID"

ROUTERS = (
    auth.router,
    devices.router,
    borrowers.router,
    loans.router,
    loss_reports.router,
    dashboard.router,
)

DESCRIPTION = (
    "## Tablet Loan Tracker API\n\n"
    "Tracks a school's tablet inventory and who has which device:\n\n"
    "- **Authentication** – Admin login (JWT Bearer), logout and password change\n"
    "- **Devices** – Inventory with CSV import/export and a per-device history\n"
    "- **Borrowers** – Student registry with two-step CSV import\n"
    "- **Loans** – Lend and return devices\n"
    "- **Loss Reports** – Declare devices lost, with an optional document\n"
    "- **Dashboard** – Inventory counters and recent activity\n\n"
    "### Rules\n"
    "A device can be lent only while it is `Serviceable` and not already on loan. "
    "Returning a device sets its condition to the return condition. "
    "Reporting a loss marks the device `Lost` and closes its open loan.\n\n"
    "### Authentication\n"
    "Every endpoint except `/health` requires a **Bearer JWT token**. "
    "Obtain one via `POST /api/v1/auth/login` (OAuth2 password flow).\n"
)

OPENAPI_TAGS = [
    {"name": "Health", "description": "Application health checks"},
    {"name": "Authentication", "description": "Login (JWT), logout and password change"},
    {"name": "Devices", "description": "Device inventory, history and availability"},
    {"name": "Borrowers", "description": "Borrower registry and CSV import"},
    {"name": "Loans", "description": "Lend and return devices"},
    {"name": "Loss Reports", "description": "Declare devices lost"},
    {"name": "Dashboard", "description": "Inventory counters and recent activity"},
]


async def prepare_database() -> None:
    """Create tables, seed the built-in admin and drop expired revocations."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        await ensure_built_in_admin(db, settings.ADMIN_USERNAME, settings.ADMIN_PASSWORD)
        await db.commit()
        await cleanup_expired_tokens(db)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await prepare_database()

    yield

    await engine.dispose()
    logger.info("Application shutdown complete")


async def request_context_middleware(request: Request, call_next):
    """Tag the request with an id (the caller's, if sent) and log its outcome."""
    request_id = bind_request_id(request.headers.get(REQUEST_ID_HEADER))

    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = round((time.perf_counter() - started) * 1000, 1)

    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code}",
        extra=log_fields(status_code=response.status_code, duration_ms=elapsed_ms),
    )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=DESCRIPTION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=OPENAPI_TAGS,
        servers=[{"url": "http://localhost:8000", "description": "Local development"}],
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.middleware("http")(request_context_middleware)

    @application.get(
        "/health",
        tags=["Health"],
        summary="Health check",
        description="Returns the current health status and API version.",
    )
    async def health_check():
        return {"status": "healthy", "version": settings.APP_VERSION}

    for router in ROUTERS:
        application.include_router(router, prefix=API_PREFIX)

    return application


app = create_app()
