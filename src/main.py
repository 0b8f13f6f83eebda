"""
Grievance Desk - Main Application
=================================

Complaint and grievance management for a school community.

Modules:
- Complaints: lifecycle, SLA deadlines, breaches, escalation, resolution
- Feedback: satisfaction surveys and the anonymous feedback channel

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, in-memory store, notifications, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from src.config import Settings, settings as default_settings
from src.container import Container, build_container
from src.infrastructure.database import (
    close_database, create_tables, get_session_maker, init_database,
)
from src.complaints.infrastructure.external import (
    LoggingNotificationGateway, SLAConfigManager, SLAScheduler, WebhookNotificationGateway,
)
from src.complaints.infrastructure.memory import in_memory_uow_factory
from src.complaints.infrastructure.repositories import sqlalchemy_uow_factory
from src.complaints.interfaces import complaints_router
from src.feedback.interfaces import feedback_router
from src.shared.api.middleware import (
    CorrelationIDMiddleware, LoggingMiddleware, install_error_handlers,
)
from src.shared.infrastructure.grafana import init_grafana_exporter
from src.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


async def _build_runtime(app: FastAPI, settings: Settings) -> Container:
    """Storage backend, policy, gateway and background jobs for a live process."""
    if settings.storage_backend == "database":
        logger.info("Initializing database")
        init_database(settings.database_url)
        # Development convenience; use migrations in production
        await create_tables()
        uow_factory = sqlalchemy_uow_factory(get_session_maker())
    else:
        logger.warning("Using in-memory storage - data is lost on restart")
        uow_factory = in_memory_uow_factory()

    logger.info("Loading SLA policy", extra={"path": str(settings.sla_config_path)})
    config_manager = SLAConfigManager()
    config_manager.load(settings.sla_config_path)
    config_manager.start_watching()
    app.state.config_manager = config_manager

    if settings.notification_webhook_url:
        gateway = WebhookNotificationGateway(
            settings.notification_webhook_url,
            channel=settings.notification_channel,
            timeout_seconds=settings.notification_timeout_seconds
        )
    else:
        logger.info("No notification webhook configured - notifications are logged only")
        gateway = LoggingNotificationGateway()

    container = build_container(uow_factory, config_manager, gateway, settings=settings)

    exporter = init_grafana_exporter(
        host=settings.grafana_host,
        api_key=settings.grafana_api_key,
        instance_id=settings.grafana_instance_id
    )

    if settings.sla_evaluation_interval > 0:
        async def sla_sweep_job():
            """Background SLA sweep, followed by a metrics push."""
            report = await container.monitor.sweep()
            await exporter.export_sweep_metrics(report)

        async def survey_expiry_job():
            await container.surveys.expire_overdue()

        scheduler = SLAScheduler()
        await scheduler.start([
            ("sla_sweep", sla_sweep_job, settings.sla_evaluation_interval),
            ("survey_expiry", survey_expiry_job, max(settings.sla_evaluation_interval, 300)),
        ])
        app.state.scheduler = scheduler
    else:
        logger.info("SLA scheduler disabled (interval 0)")

    return container


def create_app(container: Optional[Container] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        container: Pre-built services (tests); when None the lifespan builds
            the runtime from settings
        settings: Tunables, the global settings by default
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """
        Application lifespan manager.

        STARTUP:
        1. Setup structured logging
        2. Initialize storage
        3. Load SLA policy and watch it for changes
        4. Build services
        5. Start the SLA sweep and survey expiry jobs

        SHUTDOWN:
        1. Stop scheduler
        2. Stop policy watcher
        3. Close notification gateway and database connections
        """
        # === STARTUP ===
        setup_logging(settings.log_level, settings.environment)
        logger.info("Starting Grievance Desk", extra={
            "version": settings.app_version,
            "environment": settings.environment,
            "storage_backend": settings.storage_backend
        })

        owns_runtime = app.state.container is None
        if owns_runtime:
            app.state.container = await _build_runtime(app, settings)

        logger.info("Grievance Desk started successfully")

        yield  # Application runs here

        # === SHUTDOWN ===
        logger.info("Shutting down Grievance Desk")
        if owns_runtime:
            scheduler = getattr(app.state, "scheduler", None)
            if scheduler:
                await scheduler.stop()
            config_manager = getattr(app.state, "config_manager", None)
            if config_manager:
                config_manager.stop_watching()
            await app.state.container.close()
            if settings.storage_backend == "database":
                await close_database()
        logger.info("Grievance Desk shutdown complete")

    app = FastAPI(
        title="Grievance Desk API",
        description="""
    ## School Complaint & Grievance Management

    Students, parents and staff raise complaints; the desk tracks them through
    acknowledgement, investigation, resolution and verification.

    ---

    ### Complaints

    - `POST /complaints` - Raise a complaint (SLA deadlines and assignee set on creation)
    - `POST /complaints/{id}/status` - Move along the lifecycle
    - `POST /complaints/{id}/escalate` - Manual escalation
    - `POST /complaints/{id}/resolution` - Submit, verify or reject a resolution
    - `GET /complaints/{id}/history` - Merged status/comment timeline

    ### SLA

    - `GET/POST /complaints/sla-configs` - Targets per (category, priority)
    - `GET /complaints/breaches` - Detected breaches
    - `POST /complaints/sla/sweep` - Run a sweep now (a background sweep runs every interval)

    ### Feedback

    - `POST /complaints/{id}/survey` - Satisfaction survey for a resolved complaint
    - `POST /complaints/feedback/anonymous` - Anonymous feedback, tracked by a one-time token

    ---

    Every request carries `X-Actor-Id` and `X-Actor-Role` headers set by the
    upstream authentication layer.
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.container = container

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware ===
    app.add_middleware(CorrelationIDMiddleware)
    app.add_middleware(LoggingMiddleware)
    install_error_handlers(app)

    # === Include Module Routers ===
    # Feedback first: its static /complaints/... paths must win over /complaints/{ticket_id}
    app.include_router(feedback_router)
    app.include_router(complaints_router)

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
                            "storage": "database",
                            "sla_policy": "loaded",
                            "sla_scheduler": "running"
                        }
                    }
                }
            }
        }
    })
    async def health_check(request: Request):
        """Health check endpoint for load balancers and orchestrators."""
        scheduler = getattr(request.app.state, "scheduler", None)
        checks = {
            "storage": settings.storage_backend,
            "sla_policy": "loaded" if request.app.state.container is not None else "not_loaded",
            "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
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
            "service": "Grievance Desk",
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "complaints": {"prefix": "/complaints"},
                "feedback": {"prefix": "/complaints/surveys, /complaints/feedback"}
            }
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.environment == "development",
        log_level="info"
    )
