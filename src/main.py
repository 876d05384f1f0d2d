"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import logfire
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from rq import Worker

from src.api import admin, webhooks
from src.config.settings import settings
from src.database.db import SessionLocal, check_db_connection, init_db
from src.queue.config import get_all_queues, redis_conn
from src.services.repository_registry import RepositoryRegistry
from src.utils.logging import setup_observability

# Setup logging and observability
logfire_enabled = setup_observability()
logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    logger.info(
        f"Starting PR Review Orchestrator in {settings.environment} environment"
    )

    logger.info("Initializing database...")
    init_db()
    check_db_connection()
    logger.info("Database initialized and connected successfully")

    with SessionLocal() as session:
        monitored = RepositoryRegistry(session).list_pollable()
    if monitored:
        logger.info(
            f"Monitoring {len(monitored)} repositories for '{settings.review_trigger_token}' "
            f"mentions: {', '.join(repo.full_name for repo in monitored)}"
        )
    else:
        logger.warning("No active repositories with an access token; reviews are disabled")

    yield

    logger.info("Shutting down PR Review Orchestrator")


app = FastAPI(
    title="PR Review Orchestrator",
    description="Mention-triggered AI code reviews for GitHub pull requests",
    version=APP_VERSION,
    lifespan=lifespan,
)

if logfire_enabled:
    logfire.instrument_fastapi(app)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(webhooks.router)
app.include_router(admin.router)


@app.get("/health")
async def health_check() -> dict[str, str | bool | int]:
    """Health check endpoint with configuration status."""
    redis_connected = False
    queue_size = 0
    active_workers = 0
    try:
        redis_connected = bool(redis_conn.ping())
        queue_size = sum(queue.count for queue in get_all_queues())
        active_workers = len(Worker.all(connection=redis_conn))
    except Exception:
        logger.exception("Health check: failed to query Redis/queue state")

    return {
        "status": "healthy",
        "environment": settings.environment,
        "version": APP_VERSION,
        "openai_configured": bool(settings.openai_api_key),
        "admin_api_enabled": bool(settings.admin_api_token),
        "logfire_enabled": bool(settings.logfire_token),
        "review_trigger": settings.review_trigger_token,
        "redis_connected": redis_connected,
        "queue_size": queue_size,
        "active_workers": active_workers,
    }


@app.get("/database")
async def database() -> dict[str, str | bool]:
    """Database connection health check endpoint."""
    db_connected = check_db_connection()
    return {
        "database_connected": db_connected,
        "database_url": settings.database_url.split("@")[-1],  # Hide credentials
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": "PR Review Orchestrator API",
        "docs": "/docs",
        "health": "/health",
        "database": "/database",
        "webhook": "/webhook/github",
    }
