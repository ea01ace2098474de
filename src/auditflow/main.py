"""
Auditflow - Main Application
============================

Approval workflows with SLA monitoring and escalation.

Modules:
- Workflow: Multi-step approval requests with an audit trail
- SLA Monitoring: Deadlines, warning/breach alerts and escalation ladders

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and rules
- Infrastructure: Database, config watcher, scheduler, notifications
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from auditflow.bootstrap import ServiceContainer
from auditflow.config import Settings, get_settings
from auditflow.core import ApplicationException
from auditflow.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from auditflow.shared.infrastructure.logging import get_logger, setup_logging
from auditflow.sla.interfaces import sla_router
from auditflow.workflow.interfaces import approval_router, workflow_router

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    A prebuilt container (tests) is used as-is; otherwise one is created
    from settings when the app starts.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """
        STARTUP:
        1. Setup structured logging
        2. Build the service container
        3. Load SLA config, init database, start the sweep scheduler

        SHUTDOWN:
        1. Stop scheduler and config watcher
        2. Close notification client and database
        """
        setup_logging(settings.log_level, settings.environment)
        logger.info("Starting Auditflow", extra={
            "version": settings.app_version,
            "environment": settings.environment,
            "storage": settings.storage_backend
        })

        if getattr(app.state, "container", None) is None:
            app.state.container = ServiceContainer(settings)
        await app.state.container.startup()
        logger.info("Auditflow started successfully")

        yield  # Application runs here

        logger.info("Shutting down Auditflow")
        await app.state.container.shutdown()
        logger.info("Auditflow shutdown complete")

    app = FastAPI(
        title="Auditflow API",
        description="""
        ## Approval Workflows & SLA Escalation

        ### Workflows
        - `POST /workflows` - Define ordered approval steps
        - `POST /approvals` - Start an approval request
        - `POST /approvals/{id}/steps/{order}/decision` - Approve, reject or skip a step
        - `GET /approvals/pending` - Steps awaiting a decision

        ### SLA Monitoring
        - `POST /sla/subjects` - Register an incident for SLA tracking
        - `GET /sla/subjects/{id}` - Deadlines and current SLA state
        - `POST /sla/evaluate` - Run an evaluation sweep now

        Approval requests are monitored automatically: priority selects the
        policy, the first decision counts as the response and closing the
        request counts as the resolution.
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

    # Added last runs first: correlation ID must be set before logging
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
    app.include_router(workflow_router)
    app.include_router(approval_router)
    app.include_router(sla_router)

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
                            "sla_config": "loaded",
                            "sla_config_watch": "watching",
                            "sla_scheduler": "running",
                            "notifications": "LoggingNotificationDispatcher"
                        }
                    }
                }
            }
        }
    })
    async def health_check(request: Request):
        """Health check endpoint for load balancers and orchestrators."""
        container = request.app.state.container
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": container.health() if container else {}
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "Auditflow",
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "workflow": {"prefix": ["/workflows", "/approvals"]},
                "sla": {"prefix": "/sla"}
            }
        }

    return app


app = create_app()


# === Development Entry Point ===

def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "auditflow.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )


if __name__ == "__main__":
    run()
