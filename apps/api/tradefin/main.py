from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy import text

from tradefin.core.config import settings

import tradefin.models  # noqa: F401, register all models at startup

from tradefin.core.errors import (
    FundingEngineError,
    domain_exception_handler,
    global_exception_handler,
    http_exception_handler,
)
from tradefin.core.sentry import init_sentry
from tradefin.core.services import build_services
from tradefin.modules.funding.router import router as funding_router
from tradefin.modules.invoices.router import router as invoices_router
from tradefin.modules.ledger.router import router as ledger_router
from tradefin.modules.portfolio.router import router as portfolio_router
from tradefin.modules.verification.router import router as verification_router
from tradefin.modules.workflow.router import router as workflow_router

# ── Sentry: must be initialised BEFORE the FastAPI app is created ───────────
init_sentry(settings.SENTRY_DSN, settings.SENTRY_ENVIRONMENT, settings.APP_VERSION)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    logger.info("Starting tradefin API", env=settings.APP_ENV, ledger=settings.LEDGER_BACKEND)
    if getattr(_app.state, "services", None) is None:
        from tradefin.core.database import async_session_factory

        _app.state.session_factory = async_session_factory
        _app.state.services = build_services(async_session_factory)

    yield
    logger.info("Shutting down tradefin API")
    _app.state.services.workflows.teardown_all()


_is_prod = settings.APP_ENV == "production"

app = FastAPI(
    title="Tradefin API",
    description="Trade invoice verification, ledger anchoring and hybrid invoice funding.",
    version="0.1.0",
    # Disable interactive docs in production; use /openapi.json directly if needed
    docs_url=None if _is_prod else "/docs",
    redoc_url=None if _is_prod else "/redoc",
    openapi_url=None if _is_prod else "/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
)

app.add_exception_handler(FundingEngineError, domain_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, global_exception_handler)


# ── X-API-Version response header ────────────────────────────────────────────


@app.middleware("http")
async def add_version_header(request: Request, call_next) -> Response:
    response = await call_next(request)
    response.headers["X-API-Version"] = "v1"
    return response


# ── Health check (root-level, not under /v1) ─────────────────────────────────


@app.get("/health")
async def health_check(request: Request) -> dict:
    """Checks the off-chain store and reports which ledger backend is wired."""
    checks: dict[str, dict] = {}

    try:
        session_factory = request.app.state.session_factory
        async with session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["postgresql"] = {"status": "healthy"}
    except Exception as exc:
        checks["postgresql"] = {"status": "unhealthy", "error": str(exc)}

    services = getattr(request.app.state, "services", None)
    checks["ledger"] = {
        "status": "healthy" if services is not None else "unhealthy",
        "backend": settings.LEDGER_BACKEND,
    }

    overall = (
        "healthy"
        if all(c["status"] == "healthy" for c in checks.values())
        else "degraded"
    )
    return {"status": overall, "service": "tradefin-api", "checks": checks}


# ── /v1 versioned router ──────────────────────────────────────────────────────

api_v1 = APIRouter(prefix="/v1")

api_v1.include_router(invoices_router)
api_v1.include_router(workflow_router)
api_v1.include_router(funding_router)
api_v1.include_router(portfolio_router)
api_v1.include_router(ledger_router)

app.include_router(api_v1)

# Reference verification service, mounted at the hosted service's own paths
app.include_router(verification_router)
