"""
Deskflow Automation - Main Application
======================================

Workflow, assignment and SLA automation for the helpdesk.

Modules:
- Workflows: rule-driven automation and auto-assignment of tickets/assets
- SLA: deadline tracking, periodic sweep and escalation
- Helpdesk: adapters over the ticket/asset/user store and notifications

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, config watcher, scheduler, notification gateway
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration
from deskflow.config import settings

# Infrastructure
from deskflow.infrastructure.database import (
    close_database, create_tables, get_session_context, init_database
)
from deskflow.composition import build_container
from deskflow.helpdesk.infrastructure import notification_client
from deskflow.sla.infrastructure.external import SLAScheduler, config_manager

# Module Routers
from deskflow.sla.interfaces import sla_router
from deskflow.workflows.interfaces import workflows_router

# Middleware & logging
from deskflow.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    MetricsMiddleware,
    register_exception_handlers,
)
from deskflow.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)

# Global service instances
sla_scheduler = None


async def sla_sweep_job() -> None:
    """Background SLA sweep; one session per tick."""
    async with get_session_context() as session:
        await build_container(session).sla_tracker.sweep()


async def seed_default_policies() -> int:
    """Create the configured default SLA policies on an empty table."""
    defaults = config_manager.config.default_sla_policies
    async with get_session_context() as session:
        return await build_container(session).sla_policies.seed_defaults(defaults)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load automation configuration and start watching it
    4. Seed default SLA policies
    5. Start SLA sweep scheduler

    SHUTDOWN:
    1. Stop SLA scheduler
    2. Stop config watcher
    3. Close notification gateway client
    4. Close database connections
    """
    global sla_scheduler

    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Deskflow Automation", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use Alembic in production)
    database_ready = True
    try:
        await create_tables()
    except (SQLAlchemyError, OSError) as e:
        database_ready = False
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    logger.info("Loading automation configuration")
    config_manager.load(settings.automation_config_path)
    config_manager.start_watching()

    if database_ready:
        seeded = await seed_default_policies()
        if seeded:
            logger.info("Default SLA policies created", extra={"count": seeded})

    if database_ready and settings.sla_sweep_interval_seconds > 0:
        sla_scheduler = SLAScheduler(interval_seconds=settings.sla_sweep_interval_seconds)
        await sla_scheduler.start(sla_sweep_job)
    else:
        logger.info("SLA scheduler disabled")

    app.state.settings = settings
    logger.info("Deskflow Automation started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Deskflow Automation")

    if sla_scheduler:
        await sla_scheduler.stop()
        sla_scheduler = None

    config_manager.stop_watching()
    await notification_client.close()
    await close_database()

    logger.info("Deskflow Automation shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Deskflow Automation API",
    description="""
    ## Helpdesk Workflow, Assignment & SLA Automation

    ---

    ### Workflows

    - `GET/POST/PUT/DELETE /workflows/templates[/{id}]`, `PATCH /workflows/templates/{id}/toggle`
    - `POST /workflows/templates/{id}/test` - dry-run a rule
    - `GET /workflows/executions` - execution history
    - `POST /workflows/events` - lifecycle events from the helpdesk CRUD layer

    ### Auto-Assignment

    - `GET/POST/PUT/DELETE /workflows/assignment-rules[/{id}]`, `PATCH .../toggle`
    - `GET /workflows/assignment-stats`

    Strategies: round_robin, least_busy, skill_based, location_based, specific_user.

    ### SLA Tracking

    - `GET/POST/PUT/DELETE /workflows/sla-policies[/{id}]`, `PATCH .../toggle`
    - `GET /workflows/sla-stats`, `GET /workflows/ticket-sla/{ticket_id}`

    States move on_track -> at_risk -> breached; escalation fires once per
    transition. Business-hours policies count minutes Mon-Fri 09:00-17:00
    by default (see `automation_config.yaml`).

    ---

    Identity is forwarded by the gateway as `X-User-Id` / `X-User-Role`.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (last added runs first) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(CorrelationIDMiddleware)
register_exception_handlers(app)

# === Include Module Routers ===
app.include_router(workflows_router)
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "automation_config": "loaded",
                        "sla_scheduler": "running",
                        "notification_gateway": "not_configured"
                    }
                }
            }
        }
    }
})
async def health_check():
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Automation configuration status
    - Scheduler state
    - Notification gateway configuration
    """
    checks = {
        "automation_config": "loaded" if config_manager.is_loaded else "not_loaded",
        "sla_scheduler": "running" if sla_scheduler and sla_scheduler.is_running else "stopped",
        "notification_gateway": "configured" if notification_client.enabled else "not_configured"
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "workflows": {
                "prefix": "/workflows",
                "endpoints": [
                    "/workflows/templates",
                    "/workflows/executions",
                    "/workflows/assignment-rules",
                    "/workflows/assignment-stats",
                    "/workflows/events"
                ]
            },
            "sla": {
                "prefix": "/workflows",
                "endpoints": [
                    "/workflows/sla-policies",
                    "/workflows/sla-stats",
                    "/workflows/ticket-sla/{ticket_id}"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "deskflow.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
