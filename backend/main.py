# main.py — TaskShare API
# Features:
# - Request correlation IDs and timing
# - Security headers
# - Domain errors mapped to stable {"error": ...} responses
# - WebSocket notification channel
# - Health check with DB verification

import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from database import init_db, close_db, get_db_session
from dependencies import get_notification_gateway
from errors import TaskShareError
from notification_gateway import NotificationGateway

# Logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("taskshare")


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    if config.JWT_SECRET_IS_EPHEMERAL or len(config.JWT_SECRET_KEY) < 32:
        warnings.append("⚠️  JWT_SECRET_KEY is not set or insecure; tokens will not survive a restart")

    if config.DATABASE_URL.startswith("sqlite") and config.ENVIRONMENT == "production":
        warnings.append("⚠️  SQLite configured in production; set DATABASE_URL to a PostgreSQL URL")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 Starting {config.SERVICE_NAME} v{config.SERVICE_VERSION}...")
    await init_db()
    logger.info("✅ Database initialized")
    _check_startup_config()
    yield
    logger.info(f"🛑 Shutting down {config.SERVICE_NAME}...")
    await app.state.notification_gateway.drain()
    await close_db()


app = FastAPI(
    title=config.SERVICE_NAME,
    description="Personal task management with single-invitee collaboration and live notifications",
    version=config.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.state.notification_gateway = NotificationGateway()

# ============================================================
# CORS
# ============================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    correlation_id = request.headers.get("X-Correlation-ID", request_id)
    request.state.request_id = request_id
    request.state.correlation_id = correlation_id

    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"

    logger.info(
        f"{request.method} {request.url.path} → {response.status_code} "
        f"({duration:.3f}s) [rid={request_id[:8]}]"
    )
    return response


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


@app.exception_handler(TaskShareError)
async def taskshare_exception_handler(request: Request, exc: TaskShareError):
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message} "
        f"[rid={(_request_id(request) or '-')[:8]}]"
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", []) if part not in ("body", "query", "path")]
        errors.append({
            "field": ".".join(loc) or None,
            "message": str(err.get("msg", "")),
        })
    logger.info(f"Validation failed on {request.method} {request.url.path}: {len(errors)} error(s)")
    return JSONResponse(status_code=400, content={"errors": errors})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ============================================================
# ROUTERS
# ============================================================

from routers import auth, tasks, websocket_router  # noqa: E402

app.include_router(auth.router)
app.include_router(tasks.router)
app.include_router(websocket_router.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db_session),
    gateway: NotificationGateway = Depends(get_notification_gateway),
):
    """Health check with database connectivity verification"""
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError as e:
        logger.warning(f"Health check database probe failed: {e}")
        db_status = "unavailable"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": config.SERVICE_VERSION,
        "environment": config.ENVIRONMENT,
        "database": db_status,
        "websocket": gateway.get_stats(),
    }


@app.get("/")
async def root():
    return {
        "name": config.SERVICE_NAME,
        "version": config.SERVICE_VERSION,
        "docs": "/docs",
        "health": "/health",
        "websocket": "/ws?token=<access token>",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=config.ENVIRONMENT != "production",
        workers=config.WORKERS,
    )
