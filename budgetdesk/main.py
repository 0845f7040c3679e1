from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from budgetdesk.config import settings
from budgetdesk.database import init_db, close_db, get_db
from budgetdesk.logging_config import setup_logging
from budgetdesk.middleware.correlation import CorrelationIdMiddleware

# Import models so they are registered with Base.metadata
import budgetdesk.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_budgetdesk", env=settings.ENVIRONMENT)
    await init_db()
    yield
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers. All errors share one envelope:
# {"error": {"code": "...", "message": "..."}}
# ---------------------------------------------------------------------------

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=detail,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_encoder(exc.errors()),
            }
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=exc.__class__.__name__,
    )
    error = {"code": "INTERNAL_ERROR", "message": "Internal server error"}
    if settings.DEBUG:
        error["detail"] = str(exc)
    return JSONResponse(status_code=500, content={"error": error})


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID", "X-Internal-Secret"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}

    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except SQLAlchemyError as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"

    if health_status["status"] == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status


# --- Routers ---
from budgetdesk.routes.ledger import router as ledger_router  # noqa: E402
from budgetdesk.routes.budgets import router as budgets_router  # noqa: E402
from budgetdesk.routes.requests import router as requests_router  # noqa: E402
from budgetdesk.routes.approval_thresholds import router as thresholds_router  # noqa: E402
from budgetdesk.routes.audit_logs import router as audit_logs_router  # noqa: E402
from budgetdesk.routes.dashboard import router as dashboard_router  # noqa: E402
from budgetdesk.routes.imports import router as imports_router  # noqa: E402
from budgetdesk.routes.sync import router as sync_router  # noqa: E402

app.include_router(ledger_router, prefix="/api/v1/budget", tags=["Ledger"])
app.include_router(budgets_router, prefix="/api/v1/budgets", tags=["Budgets"])
app.include_router(requests_router, prefix="/api/v1/requests", tags=["Requests"])
app.include_router(thresholds_router, prefix="/api/v1/approval-thresholds", tags=["Approval Policy"])
app.include_router(audit_logs_router, prefix="/api/v1/audit-logs", tags=["Audit Logs"])
app.include_router(dashboard_router, prefix="/api/v1/dashboard", tags=["Dashboard"])
app.include_router(imports_router, prefix="/api/v1/imports", tags=["Imports"])
app.include_router(sync_router, prefix="/api/v1/sync", tags=["Sync"])
