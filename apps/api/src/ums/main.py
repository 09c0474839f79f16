"""
UMS API - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Database and Redis connections
- Challenge store and email notifier (kept on ``app.state``)
- Background job scheduler
- CORS middleware and error envelopes
- API routing
- Health check endpoints
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from ums.api import api_router
from ums.core import redis as redis_module
from ums.core.config import settings
from ums.core.database import async_session_maker, close_db, init_db
from ums.core.email import EmailNotifier
from ums.core.exceptions import register_exception_handlers
from ums.core.redis import close_redis, init_redis
from ums.core.scheduler import (
    list_registered_jobs,
    start_scheduler,
    stop_scheduler,
    trigger_job_manually,
)
from ums.modules.challenges import build_challenge_store, register_challenge_jobs


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events including:
    - Redis connection (required in production)
    - Database connection
    - Challenge store and notifier
    - Background job scheduler
    """
    # Startup
    print(f"Starting UMS API in {settings.python_env} mode...")

    client = await init_redis(required=settings.is_production)
    print("[OK] Redis connected" if client else "[WARN] Redis unavailable, using memory fallbacks")

    try:
        await init_db()
        print("[OK] Database connected")
    except Exception as e:
        print(f"[FAIL] Database connection failed: {e}")
        if settings.is_production:
            raise

    app.state.challenge_store = build_challenge_store(settings, client)
    app.state.notifier = EmailNotifier(settings.resend_api_key)
    if not app.state.notifier.is_configured:
        print("[WARN] RESEND_API_KEY not set, codes will be logged instead of emailed")

    try:
        # Register jobs before starting the scheduler
        register_challenge_jobs(app.state.challenge_store)
        await start_scheduler()
        print("[OK] Background scheduler started")
    except Exception as e:
        print(f"[FAIL] Background scheduler failed to start: {e}")
        if settings.is_production:
            raise

    yield  # Application runs here

    # Shutdown
    print("Shutting down UMS API...")

    await stop_scheduler()
    print("[OK] Background scheduler stopped")

    await close_redis()
    await close_db()
    print("[OK] Cleanup complete")


app = FastAPI(
    title=settings.app_name,
    description="University Management System API",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

register_exception_handlers(app)

app.include_router(api_router, prefix="/api/v1")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint - API welcome message."""
    return {
        "message": "Welcome to UMS API",
        "status": "running",
        "environment": settings.python_env,
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict[str, str]:
    """Readiness check: database reachable."""
    async with async_session_maker() as session:
        await session.execute(text("SELECT 1"))
    return {"status": "ready"}


# ============================================
# Debug Endpoints (development only)
# ============================================
# Manual triggering of background jobs, e.g. the expired-challenge sweep.

if settings.is_development:

    @app.get("/debug/redis", tags=["Debug"])
    async def debug_redis() -> dict[str, str]:
        """Report whether the shared Redis client is connected."""
        if redis_module.redis_client is None:
            return {"redis": "not initialized"}
        await redis_module.redis_client.ping()
        return {"redis": "connected"}

    @app.get("/debug/jobs", tags=["Debug"])
    async def list_jobs():
        """List all registered background jobs and their next run time."""
        return {"jobs": list_registered_jobs()}

    @app.post("/debug/jobs/{job_id}/trigger", tags=["Debug"])
    async def trigger_job(job_id: str):
        """
        Manually trigger a background job.

        Args:
            job_id: The ID of the job to trigger. Available jobs:
                - challenges_purge_expired

        Raises:
            HTTPException 400: If job_id is not found.
        """
        try:
            return await trigger_job_manually(job_id)
        except ValueError as e:
            raise HTTPException(
                status_code=400, detail={"error": "UNKNOWN_JOB", "message": str(e)}
            ) from e
