"""FastAPI application entrypoint for the Student Profile Engine."""
import sys

# Ensure UTF-8 encoding
if sys.stdout:
    sys.stdout.reconfigure(encoding='utf-8')

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import time
import uuid

from app.api.routes import router
from app.core.logging import get_logger, setup_logging
from app.core.config import settings

# Initialize structured logging
log_format = settings.environment == "production"
setup_logging(level=settings.log_level, json_format=log_format)
logger = get_logger(__name__)

# Application metadata
APP_VERSION = "1.0.0"
APP_NAME = "Student Profile Engine"

app = FastAPI(
    title=APP_NAME,
    description="Longitudinal student profiles built from assessment analyses",
    version=APP_VERSION,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Middleware to log all requests with timing and status code."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(
        f"Request started: {request.method} {request.url.path}",
        extra={
            "request_id": request_id,
            "method": request.method,
            "endpoint": request.url.path,
        }
    )

    try:
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000

        logger.info(
            f"Request completed: {request.method} {request.url.path}",
            extra={
                "request_id": request_id,
                "method": request.method,
                "endpoint": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }
        )

        response.headers["X-Request-ID"] = request_id
        return response

    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(
            f"Request failed: {request.method} {request.url.path}",
            extra={
                "request_id": request_id,
                "method": request.method,
                "endpoint": request.url.path,
                "duration_ms": round(duration_ms, 2),
                "error_type": type(e).__name__,
            },
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "request_id": request_id}
        )


app.include_router(router, prefix=settings.api_prefix)


@app.get("/")
def root():
    """Root endpoint with basic service info."""
    return {
        "service": APP_NAME,
        "version": APP_VERSION,
        "status": "running",
        "environment": settings.environment
    }


@app.get("/health")
def health_check():
    """Liveness probe. Returns 200 while the process is serving."""
    return {
        "status": "healthy",
        "version": APP_VERSION,
        "checks": {
            "api": "ok",
            "backend": settings.profile_backend,
        }
    }


@app.get("/ready")
def readiness_check():
    """Readiness probe; pings Redis when it backs the profile store."""
    checks = {"backend": settings.profile_backend}

    if settings.profile_backend == "redis":
        from app.infrastructure.redis import get_redis_client
        import redis

        client = get_redis_client()
        try:
            checks["redis"] = "ok" if client is not None and client.ping() else "unavailable"
        except redis.RedisError:
            checks["redis"] = "unavailable"

    all_ok = checks.get("redis", "ok") == "ok"

    return {
        "status": "ready" if all_ok else "degraded",
        "checks": checks
    }
