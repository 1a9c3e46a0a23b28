"""
Deskflow - Main Application
===========================

Unified ticket workflow and SLA engine for IT service management.

Modules:
- Workflow: Per-category statuses, transitions, numbering and events
- SLA: Response/resolution budgets, pause/resume and breach detection

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Workflow engine, ports and DTOs
- Domain: Entities, value objects and pure domain services
- Infrastructure: Database, repositories, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from deskflow.config import get_settings
from deskflow.core import ApplicationException

# Infrastructure
from deskflow.infrastructure.database import (
    close_database, create_tables, get_session_context, init_database,
)

# Workflow / SLA
from deskflow.sla.domain import SLAPolicyTable
from deskflow.workflow.application import LoggingEventPublisher, WorkflowEngine
from deskflow.workflow.domain import WorkflowRegistry
from deskflow.workflow.infrastructure import (
    SLAScheduler, SQLAlchemyTicketRepository, sweep_breaches,
)

# Module Routers
from deskflow.workflow.interfaces import workflow_router

# Logging
from deskflow.shared.infrastructure.logging import setup_logging, get_logger
from deskflow.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)

logger = get_logger(__name__)
settings = get_settings()

sla_scheduler = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Load workflow table and SLA policy (fail fast on bad config)
    3. Initialize database and create tables
    4. Start SLA breach sweep

    SHUTDOWN:
    1. Stop SLA scheduler
    2. Close database connections
    """
    global sla_scheduler

    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Deskflow", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    # ConfigurationException propagates: the process must not serve requests
    # with an inconsistent workflow table or SLA policy.
    logger.info("Loading workflow and SLA configuration")
    registry = WorkflowRegistry.load(settings.workflow_config_path)
    policy = SLAPolicyTable.load(settings.sla_policy_path)
    publisher = LoggingEventPublisher()

    app.state.settings = settings
    app.state.workflow_registry = registry
    app.state.sla_policy = policy
    app.state.event_publisher = publisher

    # Initialize database
    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use Alembic in production)
    logger.info("Creating database tables")
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    if settings.sla_evaluation_interval > 0:
        async def sla_breach_job():
            """Background SLA breach sweep."""
            async with get_session_context() as session:
                repository = SQLAlchemyTicketRepository(session)
                engine = WorkflowEngine(registry, policy, repository, publisher)
                await sweep_breaches(engine, repository)

        sla_scheduler = SLAScheduler(interval_seconds=settings.sla_evaluation_interval)
        await sla_scheduler.start(sla_breach_job)

    logger.info("Deskflow started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Deskflow")

    if sla_scheduler:
        await sla_scheduler.stop()
        sla_scheduler = None

    await close_database()

    logger.info("Deskflow shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Deskflow API",
    description="""
    ## Unified Ticket Workflow & SLA Engine

    One engine for tickets, incidents, service requests, changes and problems.

    ---

    ### Workflow

    - `POST /workflow/tickets` - Create a ticket of any category
    - `GET /workflow/tickets` - List tickets
    - `GET /workflow/tickets/{id}` - Get a ticket with its legal next statuses
    - `POST /workflow/tickets/{id}/transitions` - Change status
    - `POST /workflow/tickets/{id}/priority` - Change priority / impact / urgency
    - `GET /workflow/categories/{category}` - Describe a category workflow

    ### SLA

    - `POST /workflow/tickets/{id}/pause` / `resume` - Stop and restart the clock
    - `GET /workflow/tickets/{id}/sla` - Live SLA reading
    - `POST /workflow/tickets/{id}/sla/evaluate` - Persist a detected breach

    **Default SLA budgets (minutes, response / resolution):**

    | Priority | Response | Resolution |
    |----------|----------|------------|
    | Critical | 15       | 240        |
    | High     | 60       | 480        |
    | Medium   | 240      | 1440       |
    | Low      | 480      | 2880       |

    Writes accept `expected_version`; a stale version answers 409.
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

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(workflow_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Loaded workflow categories
    - Scheduler state
    """
    registry = getattr(request.app.state, "workflow_registry", None)
    checks = {
        "workflow_config": "loaded" if registry else "not_loaded",
        "sla_policy": "loaded" if getattr(request.app.state, "sla_policy", None) else "not_loaded",
        "sla_scheduler": "running" if sla_scheduler and sla_scheduler.is_running else "stopped",
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
        "service": "Deskflow",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "workflow": {
                "prefix": "/workflow",
                "categories": ["ticket", "incident", "service_request", "change", "problem"]
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
