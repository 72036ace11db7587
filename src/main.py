"""
CleanOps Directory

FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional, Tuple

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from src.api.deps import DbSession
from src.api.middleware.request_id import REQUEST_ID_HEADER, RequestIdMiddleware
from src.api.v1 import router as api_v1_router
from src.config import get_settings
from src.database import close_db, init_db
from src.kernel.errors import DirectoryError
from src.logging_config import configure_logging, get_logger
from src.schemas.common import ErrorResponse, HealthResponse

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )

    logger.info("Starting %s v%s (%s)", settings.project_name, settings.version, settings.environment)
    await init_db()
    logger.info("Directory schema ready")

    yield

    await close_db()
    logger.info("Database connections closed")


app = FastAPI(
    title=settings.project_name,
    description="""
    CleanOps Directory

    Role-scoped directory of staff and client records for a cleaning-services
    operator.

    ## Features

    - **Scoped search**: every caller only ever sees the roles below them
    - **Lifecycle**: soft delete, restore, status changes and supervisor assignment
    - **Batches**: per-item outcomes, one bad item never sinks the rest
    - **Audit trail**: every mutation and every refused attempt is recorded
    """,
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


def allowed_origins() -> list:
    origins = list(settings.cors_origins)
    if settings.environment != "development" and settings.frontend_url not in origins:
        origins.insert(0, settings.frontend_url)
    return origins


_cors_origins = allowed_origins()

# Last added runs outermost; CORS has to wrap everything.
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[REQUEST_ID_HEADER],
)


def _error_headers(request: Request) -> Tuple[Dict[str, str], Optional[str]]:
    """CORS and correlation headers for responses built by exception handlers."""
    origin = request.headers.get("origin") or ""
    headers = {
        "Access-Control-Allow-Origin": origin if origin in _cors_origins else _cors_origins[0],
        "Access-Control-Allow-Credentials": "true",
    }
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        headers[REQUEST_ID_HEADER] = req_id
    return headers, req_id


def _error_response(request: Request, status_code: int, body: ErrorResponse, extra_headers: Any = None) -> JSONResponse:
    headers, req_id = _error_headers(request)
    if extra_headers:
        headers.update(extra_headers)
    body.request_id = req_id
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


@app.exception_handler(DirectoryError)
async def directory_exception_handler(request: Request, exc: DirectoryError):
    """Map domain errors to their HTTP status with a stable error code."""
    extra = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        extra = {"WWW-Authenticate": "Bearer"}
    body = ErrorResponse(detail=exc.message, code=exc.code, details=exc.details or None)
    return _error_response(request, exc.status_code, body, extra)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error_response(request, exc.status_code, ErrorResponse(detail=str(exc.detail)), exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    body = ErrorResponse(detail="Validation error", code="VALIDATION_FAILED", errors=errors)
    return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, body)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Unexpected failures: logged with traceback, body only names the request."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    detail = f"{type(exc).__name__}: {exc}" if settings.debug else "Internal server error"
    body = ErrorResponse(detail=detail, code="INTERNAL_ERROR")
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, body)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(db: DbSession):
    """Liveness plus a round trip to the database."""
    try:
        await db.execute(text("SELECT 1"))
        database = "connected"
    except SQLAlchemyError as exc:
        logger.warning("Health check could not reach the database: %s", exc)
        database = "unavailable"
    return HealthResponse(
        status="ok" if database == "connected" else "degraded",
        version=settings.version,
        database=database,
    )


@app.get("/", tags=["Root"])
async def root():
    return {
        "name": settings.project_name,
        "version": settings.version,
        "docs": "/docs" if settings.debug else "disabled",
        "api": {"v1": settings.api_v1_prefix},
    }


app.include_router(api_v1_router, prefix=settings.api_v1_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
