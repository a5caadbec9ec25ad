"""
Resume Builder API - FastAPI Application
Credit ledger, subscription provisioning and plan catalog.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from resume_api.api.dependencies import get_ledger
from resume_api.api.error_handlers import register_error_handlers
from resume_api.api.routes import health
from resume_api.api.v1 import credits, plans, subscriptions
from resume_api.config import settings
from resume_api.core.logging import configure_logging
from resume_api.database import init_db
from resume_api.services.refresh_scheduler import CreditRefreshScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    configure_logging(settings.log_level)
    logger.info("Starting Resume Builder API...")

    init_db()
    logger.info("Database initialized")

    scheduler = None
    if settings.credit_refresh_enabled:
        scheduler = CreditRefreshScheduler(get_ledger(), schedule_cron=settings.credit_refresh_cron)
        scheduler.start()
        app.state.refresh_scheduler = scheduler
    logger.info("API running on %s environment", settings.app_env)
    yield
    if scheduler is not None:
        await scheduler.stop()
    logger.info("Shutting down Resume Builder API...")


app = FastAPI(
    title=settings.app_name,
    description="Backend API for the resume builder",
    version="1.0.0",
    lifespan=lifespan,
)

# Respect forwarded proto/host so redirects don't downgrade to http.
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


@app.get("/")
async def root() -> dict:
    return {
        "name": settings.app_name,
        "environment": settings.app_env,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


prefix = settings.api_v1_prefix
app.include_router(health.router, prefix=prefix, tags=["Health"])
app.include_router(plans.router, prefix=f"{prefix}/plans", tags=["Plans"])
app.include_router(credits.router, prefix=f"{prefix}/credits", tags=["Credits"])
app.include_router(
    subscriptions.router,
    prefix=f"{prefix}/subscriptions",
    tags=["Subscriptions"],
)
