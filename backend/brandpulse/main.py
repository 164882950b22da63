"""
BrandPulse — FastAPI Backend
Aggregates customer reviews from Google, Facebook and Trustpilot, classifies
their sentiment with an AI model and serves per-brand dashboards.
All data persisted to PostgreSQL.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from brandpulse.config import get_settings
from brandpulse.database import init_db, check_db_connection
from brandpulse.errors import BrandPulseError, RateLimitedError
from brandpulse.routers import auth, users, brands, sources, sync_jobs, reviews, dashboard, cron
from brandpulse.scheduler import start_scheduler, stop_scheduler
from brandpulse.services.scheduler_service import get_worker_pool
from brandpulse.utils import utcnow

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting BrandPulse...")
    try:
        await init_db()
        logger.info("Database initialized, all tables ready.")
        if settings.scheduler_enabled:
            await start_scheduler()
    except Exception as e:
        logger.error(f"Startup failed (DB/scheduler): {e}", exc_info=True)
        # Still yield so app can serve /api/health (degraded) and logs are visible
    yield
    logger.info("Shutting down...")
    stop_scheduler()
    pool = get_worker_pool()
    if pool.pending:
        logger.info(f"Waiting for {pool.pending} running sync job(s)")
        await pool.join()


app = FastAPI(
    title="BrandPulse",
    description="Review aggregation and sentiment dashboards for local businesses",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BrandPulseError)
async def brandpulse_error_handler(request: Request, exc: BrandPulseError):
    body = {"error": exc.code, "detail": exc.message}
    headers = None
    if isinstance(exc, RateLimitedError):
        body["next_eligible_at"] = exc.next_eligible_at.isoformat()
        retry_after = max(0, int((exc.next_eligible_at - utcnow()).total_seconds()))
        headers = {"Retry-After": str(retry_after)}
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


# ── Auth (register/login public; me requires JWT) ─────────────────────
app.include_router(auth.router, prefix="/api")
app.include_router(users.router, prefix="/api")

# ── Register Routers (each endpoint requires JWT + brand ownership) ────
app.include_router(brands.router, prefix="/api")
app.include_router(sources.router, prefix="/api")
app.include_router(sync_jobs.router, prefix="/api")
app.include_router(reviews.router, prefix="/api")
app.include_router(dashboard.router, prefix="/api")
app.include_router(cron.router, prefix="/api")  # No auth, uses CRON_SECRET


@app.get("/api/health")
async def health_check():
    db_ok = await check_db_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": "BrandPulse",
        "database": "connected" if db_ok else "disconnected",
        "scheduler_enabled": settings.scheduler_enabled,
    }
