# main.py - MapRoulette API
# Features:
# - Request correlation IDs and structured request/response logging
# - Security headers
# - Domain errors mapped to HTTP status codes
# - Health check with DB verification
# - All routers registered

import os
import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from config import ENVIRONMENT, SERVICE_VERSION, SUPER_ACCOUNTS
from database import init_db, close_db, get_db_session, engine
from errors import IllegalAccessError, InvalidStatusError, NotFoundError
from logging_system import (
    RequestContext, get_logger, set_current_context, reset_current_context, log_security,
)
from telemetry import setup_telemetry

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("maproulette")


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        warnings.append(
            "JWT_SECRET_KEY is not set or too short; tokens will not survive a restart"
        )

    if "*" in SUPER_ACCOUNTS:
        if ENVIRONMENT == "production":
            warnings.append("SUPER_ACCOUNTS=* makes every user a super user")
        else:
            logger.info("SUPER_ACCOUNTS=*: every user is a super user")
    elif not SUPER_ACCOUNTS:
        logger.info("No SUPER_ACCOUNTS configured; super users come from super user groups only")

    if os.getenv("DATABASE_URL", "").startswith("sqlite") and ENVIRONMENT == "production":
        warnings.append("DATABASE_URL points at SQLite in production")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting MapRoulette API v%s", SERVICE_VERSION)
    await init_db()
    _check_startup_config()
    # no-op unless OTEL_EXPORTER_OTLP_ENDPOINT is set
    setup_telemetry(app, engine)
    yield
    logger.info("Shutting down MapRoulette API")
    await close_db()


app = FastAPI(
    title="MapRoulette",
    description="Crowdsourced map fixing: projects, challenges, tasks and surveys",
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:9000"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "apiKey", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    context = RequestContext.create(
        request_id=request.headers.get("X-Request-ID"),
        correlation_id=request.headers.get("X-Correlation-ID"),
    )
    request.state.request_id = context.request_id
    request.state.correlation_id = context.correlation_id
    token = set_current_context(context)
    try:
        get_logger().request(request.method, request.url.path)
        response = await call_next(request)
        duration_ms = context.elapsed_ms
        get_logger().response(
            response.status_code, duration_ms, metadata={"path": request.url.path}
        )
    finally:
        reset_current_context(token)

    response.headers["X-Request-ID"] = context.request_id
    response.headers["X-Correlation-ID"] = context.correlation_id
    response.headers["X-Response-Time"] = f"{duration_ms / 1000:.4f}s"
    return response


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

def _error(request: Request, status_code: int, detail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@app.exception_handler(IllegalAccessError)
async def illegal_access_handler(request: Request, exc: IllegalAccessError):
    log_security("illegal_access", metadata={"path": request.url.path, "reason": str(exc)})
    return _error(request, 403, str(exc))


@app.exception_handler(InvalidStatusError)
async def invalid_status_handler(request: Request, exc: InvalidStatusError):
    return _error(request, 400, str(exc))


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(request, 404, str(exc))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("Constraint violation on %s: %s", request.url.path, exc.orig)
    return _error(request, 409, f"Conflicts with existing data: {exc.orig}")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Sanitise errors to ensure JSON serialisability
    errors = []
    for err in exc.errors():
        clean_err = {
            "type": str(err.get("type", "unknown")),
            "loc": list(err.get("loc", [])),
            "msg": str(err.get("msg", "")),
        }
        if "input" in err:
            try:
                json.dumps(err["input"])
                clean_err["input"] = err["input"]
            except (TypeError, ValueError):
                clean_err["input"] = str(err["input"])
        errors.append(clean_err)

    return _error(request, 422, errors)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return _error(request, 500, "Internal server error")


# ============================================================
# ROUTERS
# ============================================================

from routers import auth, users, projects, challenges, tasks, surveys, status_actions

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(projects.router)
app.include_router(challenges.router)
app.include_router(tasks.router)
app.include_router(surveys.router)
app.include_router(status_actions.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check():
    """Health check with database connectivity verification"""
    db_status = "unknown"
    try:
        async for db in get_db_session():
            await db.execute(text("SELECT 1"))
            db_status = "connected"
            break
    except Exception as e:
        db_status = f"error: {str(e)[:100]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": SERVICE_VERSION,
        "environment": ENVIRONMENT,
        "database": db_status,
    }


@app.get("/")
async def root():
    return {
        "name": "MapRoulette",
        "version": SERVICE_VERSION,
        "docs": "/docs",
        "health": "/health",
        "api": "/api/v2",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=ENVIRONMENT != "production",
        workers=int(os.getenv("WORKERS", 1)),
    )
