"""Session Guard FastAPI application"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import logging
import time
import traceback
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from sessionguard.config import settings
from sessionguard.core.database import SessionLocal, init_db
from sessionguard.core.deny_list import access_deny_list
from sessionguard.core.exceptions import BaseAPIException, RateLimitExceededError
from sessionguard.api.deps import NEW_ACCESS_TOKEN_HEADER, NEW_REFRESH_TOKEN_HEADER
from sessionguard.api.v1 import auth, security
from sessionguard.schemas.response import ErrorResponse, HealthResponse
from sessionguard.services.security_event_worker import security_event_worker


def _configure_logging() -> None:
    log_file = Path(settings.get_log_file())
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.FileHandler(log_file), logging.StreamHandler()],
    )


_configure_logging()
logger = logging.getLogger(__name__)

REQUEST_COUNT = Counter(
    "sessionguard_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "sessionguard_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
WORKER_UP_GAUGE = Gauge("sessionguard_event_worker_up", "Event worker liveness (1 running, 0 stopped)")

SLOW_REQUEST_SECONDS = 1.0
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    # Responses may carry rotated credentials.
    "Cache-Control": "no-store",
}

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
)

# Rotated credentials travel in response headers, so browsers must be allowed to read them.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[NEW_ACCESS_TOKEN_HEADER, NEW_REFRESH_TOKEN_HEADER, "X-Request-ID"],
)


@app.middleware("http")
async def security_headers_and_metrics(request: Request, call_next):
    """Tag the request with an id, stamp security headers and record timing."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id

    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    response.headers.update(SECURITY_HEADERS)
    response.headers["X-Request-ID"] = request_id

    # Label by route template so path parameters do not explode cardinality.
    route_path = getattr(request.scope.get("route"), "path", request.url.path)
    REQUEST_COUNT.labels(request.method, route_path, str(response.status_code)).inc()
    REQUEST_LATENCY.labels(request.method, route_path).observe(elapsed)
    if elapsed > SLOW_REQUEST_SECONDS:
        logger.warning(
            "Slow request %s %s took %.2fs request_id=%s", request.method, route_path, elapsed, request_id
        )
    return response


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    details: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        details=details,
        path=request.url.path,
        timestamp=datetime.utcnow().isoformat(),
    ).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _challenge_headers(exc: BaseAPIException) -> Optional[Dict[str, str]]:
    if isinstance(exc, RateLimitExceededError):
        return {"Retry-After": str(exc.details.get("retry_after", 60))}
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        return {"WWW-Authenticate": "Bearer"}
    return None


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "%s %s -> %s: %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.message,
        extra={"details": exc.details},
    )
    return _error_response(
        request, exc.status_code, exc.message, details=exc.details, headers=_challenge_headers(exc)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning("Validation failed on %s %s: %s", request.method, request.url.path, errors)
    return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation failed", details=errors)


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(
        "Database error on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        extra={"traceback": traceback.format_exc()},
    )
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "A database error occurred. Please try again later.",
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.critical(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        extra={"traceback": traceback.format_exc()},
    )
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred.")


@app.on_event("startup")
async def startup_event():
    """Validate settings, prepare storage, then start the background pieces."""
    settings.validate_security_settings()
    logger.info(
        "Starting %s v%s (environment=%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT
    )

    try:
        init_db()
    except Exception:
        logger.exception("Database initialization failed (DB_INIT_MODE=%s)", settings.DB_INIT_MODE)
        raise

    access_deny_list.init()
    logger.info("Access deny-list backend: %s", type(access_deny_list).__name__)

    if settings.RUN_EVENT_WORKER:
        security_event_worker.start()
    WORKER_UP_GAUGE.set(1 if security_event_worker.is_running() else 0)


@app.on_event("shutdown")
async def shutdown_event():
    """Drain pending security events and release the deny-list connection."""
    if security_event_worker.is_running():
        security_event_worker.stop()
    WORKER_UP_GAUGE.set(0)
    access_deny_list.close()
    logger.info("%s stopped", settings.APP_NAME)


def _database_ready() -> Tuple[bool, Optional[str]]:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return True, None
    except SQLAlchemyError as exc:
        return False, str(exc)
    finally:
        db.close()


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Liveness plus readiness of the database, event worker and deny-list."""
    db_ok, db_error = _database_ready()
    worker_status = security_event_worker.status()
    WORKER_UP_GAUGE.set(1 if worker_status["running"] else 0)

    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=settings.APP_VERSION,
        timestamp=datetime.utcnow().isoformat(),
        readiness={
            "database": {"ok": db_ok, "error": db_error},
            "event_worker": worker_status,
            "deny_list": settings.DENY_LIST_BACKEND.lower(),
        },
    )


@app.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/api/docs" if settings.DEBUG else "disabled",
    }


_error_responses = {401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}

app.include_router(
    auth.router,
    prefix="/api/v1/auth",
    tags=["Sessions"],
    responses={**_error_responses, 429: {"model": ErrorResponse}},
)
app.include_router(security.router, prefix="/api/v1/security", tags=["Security"], responses=_error_responses)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "sessionguard.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
    )
