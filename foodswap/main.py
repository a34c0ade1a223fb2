"""
FoodSwap Backend - FastAPI Application

Main application entry point with middleware, routers, scheduled jobs and
OpenAPI documentation.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from foodswap.config import settings
from foodswap.database import close_db, get_db, get_redis, init_db
from foodswap.errors import FoodSwapError, PartialFailure
from foodswap.routers import chats, files, foods, notifications, scheduler, transactions

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def create_scheduler() -> AsyncIOScheduler:
    """Register the swap maintenance jobs."""
    from foodswap.scheduler import chat_reaper_job, reconciliation_job

    job_scheduler = AsyncIOScheduler()

    job_scheduler.add_job(
        chat_reaper_job.execute,
        "interval",
        minutes=settings.reaper_interval_minutes,
        id="chat_reaper",
        name="Chat Reaper Job",
        max_instances=1,
        coalesce=True,  # Skip if previous run is still executing
    )

    job_scheduler.add_job(
        reconciliation_job.execute,
        "interval",
        minutes=settings.reconcile_interval_minutes,
        id="food_reconciliation",
        name="Food Reconciliation Job",
        max_instances=1,
        coalesce=True,
    )

    return job_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Initialize database connections
    - Start scheduled jobs
    - Cleanup on shutdown
    """
    # Startup
    await init_db()

    try:
        await get_db().client.admin.command("ping")
        logger.info("Connected to db")
    except Exception as e:
        logger.error(f"FAILED to connect to db: {e}")

    redis = get_redis()
    if redis is None:
        logger.info("Redis not configured, running without locks")
    else:
        try:
            await redis.ping()
            logger.info("Redis connected")
        except Exception as e:
            logger.error(f"FAILED to connect to Redis: {e}")

    job_scheduler = None
    if settings.enable_scheduler:
        job_scheduler = create_scheduler()
        job_scheduler.start()
        logger.info(
            f"Scheduler started: Chat Reaper ({settings.reaper_interval_minutes}m) | "
            f"Reconciliation ({settings.reconcile_interval_minutes}m)"
        )

    yield

    # Shutdown
    if job_scheduler:
        job_scheduler.shutdown()
        logger.info("Scheduler stopped")

    await close_db()


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="FoodSwap API",
    description="""
    FoodSwap - Peer-to-peer food sharing API

    ## Features
    - Food listings with photos
    - Swap requests with an accept / complete / cancel lifecycle
    - Private chat per swap, deleted after the retention window
    - In-app notifications for requests and responses

    ## Authentication
    All endpoints require a valid Firebase ID token in the
    Authorization header: `Authorization: Bearer <firebase_id_token>`
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


# =============================================================================
# Middleware
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(FoodSwapError)
async def foodswap_exception_handler(request: Request, exc: FoodSwapError):
    """Render domain errors with their status code and the failed operation."""
    if isinstance(exc, PartialFailure):
        logger.error(
            f"{request.method} {request.url.path} partially applied: "
            f"{exc.operation} stopped at {exc.step} ({exc.cause})"
        )

    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors.

    SECURITY: Do not leak internal error details.
    """
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Something went wrong. Please try again."},
    )


# =============================================================================
# Routers
# =============================================================================

app.include_router(foods.router, prefix=f"{settings.api_v1_str}/foods", tags=["Foods"])

app.include_router(
    transactions.router,
    prefix=f"{settings.api_v1_str}/transactions",
    tags=["Transactions"],
)

app.include_router(chats.router, prefix=f"{settings.api_v1_str}/chats", tags=["Chats"])

app.include_router(
    notifications.router,
    prefix=f"{settings.api_v1_str}/notifications",
    tags=["Notifications"],
)

app.include_router(files.router, prefix=f"{settings.api_v1_str}/files", tags=["Files"])

# Scheduler monitoring routes
app.include_router(scheduler.router, prefix=settings.api_v1_str, tags=["Scheduler"])


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness probe."""
    return {"status": "healthy"}
