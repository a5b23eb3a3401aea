"""
Mini Compete API - Main Application Entry Point

A competition registration API demonstrating:
- Concurrency-safe seat registration (serializable transaction + Redis lock)
- Idempotent retries via the Idempotency-Key header
- Asynchronous confirmation emails through a Redis job queue
- Structured logging with request correlation
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from minicompete.api.middleware import RequestLoggingMiddleware
from minicompete.api.router import api_router
from minicompete.bootstrap import build_container
from minicompete.core.config import get_settings
from minicompete.core.errors import RegistrationError
from minicompete.core.logging import get_logger, setup_logging
from minicompete.core.metrics import metrics_endpoint
from minicompete.infrastructure.redis_client import ping_redis

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: build the container on startup, close it on shutdown."""
    setup_logging(service="api")

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        lock_backend=settings.LOCK_BACKEND,
    )

    # A container set before startup (tests) is left to its owner
    owned = getattr(app.state, "container", None) is None
    if owned:
        app.state.container = build_container(settings)

    if await ping_redis(app.state.container.redis):
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Locks fail open; notifications will not be enqueued")

    yield

    if owned:
        await app.state.container.close()
        app.state.container = None
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Competition registration API with concurrency-safe, idempotent registrations",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

# Routes
app.include_router(api_router)


@app.exception_handler(RegistrationError)
async def registration_error_handler(request: Request, exc: RegistrationError) -> JSONResponse:
    logger.info("registration_error", kind=exc.kind.value, status_code=exc.status_code, detail=exc.detail)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": exc.kind.value},
        headers=headers,
    )


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint for Docker and load balancers."""
    container = request.app.state.container

    redis_ok = await ping_redis(container.redis)
    queue = await container.queue.counts() if redis_ok else None

    try:
        async with container.database.sessions() as session:
            await session.execute(text("SELECT 1"))
        database_ok = True
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        database_ok = False

    return {
        "status": "healthy" if database_ok else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "database": "up" if database_ok else "down",
        "redis": "up" if redis_ok else "down",
        "queue": queue,
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
