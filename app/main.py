"""Main FastAPI application for the philosopher progression service."""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from fastapi import FastAPI, Depends
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.orm import Session
from app.routers import user, progression, gacha, sync
from app.db.init_db import init_db
from app.db.database import get_db
from app.dependencies import get_pipeline
from app.limiter import limiter
from app.logging_config import setup_logging, get_logger
from app.config import settings

# Set up logging on module import
log_level = settings.LOG_LEVEL if settings.LOG_LEVEL else None
setup_logging(log_level)
logger = get_logger(__name__)


async def sync_loop(interval: float) -> None:
    """Periodically replay the offline queue and flush deferred updates."""
    pipeline = get_pipeline()
    while True:
        await asyncio.sleep(interval)
        report = await asyncio.to_thread(pipeline.drain)
        if report.applied:
            logger.info(f"Background sync replayed {len(report.applied)} queued updates")
        await asyncio.to_thread(pipeline.flush_deferred)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database and background sync on startup.

    This function runs once when the application starts, performing:
    - Record store and offline queue table creation
    - Schema migrations
    - Content catalog validation
    - An initial drain of updates queued before the last shutdown
    """
    logger.info("Application startup initiated")
    try:
        init_db()
        logger.info("Database initialization completed successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        raise

    pipeline = get_pipeline()
    report = await asyncio.to_thread(pipeline.drain, True)
    if report.applied:
        logger.info(f"Replayed {len(report.applied)} updates queued before startup")

    task = asyncio.create_task(sync_loop(settings.SYNC_INTERVAL_SECONDS))

    yield

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    # Deferred updates the store cannot take are moved to the persisted queue
    await asyncio.to_thread(pipeline.flush_deferred)
    pipeline.close()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Philosopher Progression API",
    description="""
    Progression and reward engine for a philosophy study game.

    ## Features

    - **Experience & Levels**: level = floor(sqrt(experience / 100)) + 1, two tickets per level gained
    - **Achievements & Milestones**: one-time rewards, re-checking is always safe
    - **Daily Streaks**: rewards every seven consecutive days
    - **Gacha**: weighted rarity pulls with a pity guarantee, 10-pulls for 9 tickets
    - **Offline Sync**: updates queue locally and replay in order when connectivity returns
    - **Anonymous Sessions**: No account required, uses browser cookies

    ## Update Flow

    1. **Submit**: POST `/api/progression/update` with the activity's deltas
    2. **Result**: `{success, queued}` plus level and rewards when applied immediately
    3. **Offline**: queued updates sync on POST `/api/sync/connectivity` with `is_connected: true`
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_tags=[
        {
            "name": "user",
            "description": "User session bootstrap"
        },
        {
            "name": "progression",
            "description": "Activity updates, streaks, achievements and milestones"
        },
        {
            "name": "gacha",
            "description": "Pulls, collection, history and statistics"
        },
        {
            "name": "sync",
            "description": "Connectivity signal and offline queue"
        },
        {
            "name": "health",
            "description": "Service health and readiness checks"
        }
    ]
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

logger.info("Rate limiting enabled: default 100 requests/minute per IP")

if settings.is_production:
    from starlette.middleware.sessions import SessionMiddleware
    app.add_middleware(SessionMiddleware, secret_key=settings.SECRET_KEY)
    logger.info("Session middleware enabled")

# Include routers
app.include_router(user.router)
app.include_router(progression.router)
app.include_router(gacha.router)
app.include_router(sync.router)


@app.get("/health", tags=["health"])
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint with database verification.

    Returns:
        200 OK: Service is healthy and the record store is accessible
        503 Service Unavailable: Record store connection failed

    Example Response (Healthy):
        {
            "status": "healthy",
            "database": "connected",
            "timestamp": "2025-11-29T10:30:00.000000Z",
            "environment": "production"
        }
    """
    timestamp = datetime.utcnow().isoformat() + "Z"

    try:
        db.execute(text("SELECT 1"))
        logger.debug("Health check passed")

        return {
            "status": "healthy",
            "database": "connected",
            "timestamp": timestamp,
            "environment": settings.ENVIRONMENT
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}", exc_info=True)

        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e),
                "timestamp": timestamp
            }
        )


@app.get("/readiness", tags=["health"])
async def readiness_check(db: Session = Depends(get_db)):
    """Readiness check for container orchestration.

    Returns:
        200 OK: Service is ready
        503 Service Unavailable: Service is not ready
    """
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ready", "timestamp": datetime.utcnow().isoformat() + "Z"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "error": str(e)}
        )
