import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from pydantic import ValidationError

from omnidrop import __version__
from omnidrop.client_registry import ClientRegistry, RegistryError
from omnidrop.config import Settings
from omnidrop.dependencies.app_deps import get_app_settings
from omnidrop.errors import register_exception_handlers
from omnidrop.logging_config import (
    LoggingMiddleware,
    RequestIdMiddleware,
    logger,
    setup_logging,
)
from omnidrop.metrics import PrometheusMetrics
from omnidrop.middleware import MetricsMiddleware, RecoveryMiddleware, TimeoutMiddleware
from omnidrop.routers import file_routes, health_routes, task_routes, token_routes
from omnidrop.security import TokenManager
from omnidrop.services.file_writer import FileWriter
from omnidrop.services.task_bridge import Executor, TaskBridge

KEEP_ALIVE_SECONDS = 60
GRACEFUL_SHUTDOWN_SECONDS = 10


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Logs the startup configuration and probes the task bridge.

    A failing probe is only a warning: the service still starts and `/tasks`
    reports bridge failures per request.
    """
    settings: Settings = app.state.settings
    logger.info(
        "Application startup sequence initiated.",
        extra={
            "environment": settings.environment_label or "unset",
            "legacy_auth": settings.LEGACY_AUTH_ENABLED,
            "oauth": settings.jwt_enabled,
            "files_dir": str(settings.FILES_DIR),
        },
    )

    health = await app.state.task_bridge.check_health()
    if health.healthy:
        logger.info(f"Task bridge ready (script: {health.script_path})")
    else:
        for error in health.errors:
            logger.warning(f"Task bridge health check: {error}")

    logger.info("Application startup complete.")
    yield
    logger.info("Application shutdown complete.")


def create_app(
    settings: Settings,
    registry: Optional[ClientRegistry] = None,
    executor: Optional[Executor] = None,
    metrics: Optional[PrometheusMetrics] = None,
) -> FastAPI:
    """
    Builds the application. Collaborators default to the real ones derived
    from `settings`; tests pass their own executor, registry or metrics.
    """
    metrics = metrics or PrometheusMetrics()
    if registry is None:
        registry = ClientRegistry.load(settings.OAUTH_CLIENTS_FILE)

    token_manager = None
    if settings.jwt_enabled:
        token_manager = TokenManager(
            settings.JWT_SECRET,
            issuer=settings.JWT_ISSUER,
            algorithm=settings.JWT_ALGORITHM,
        )

    docs_enabled = not settings.is_production()
    app = FastAPI(
        title="OmniDrop",
        description="Authenticated local endpoint for creating tasks and dropping files.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
        openapi_tags=[
            {"name": "Token Acquisition", "description": "OAuth 2.0 client-credentials grant."},
            {"name": "Tasks", "description": "Create tasks through the task bridge."},
            {"name": "Files", "description": "Write files below the files directory."},
            {"name": "Health", "description": "Liveness and metrics."},
        ],
    )
    app.state.settings = settings
    app.state.metrics = metrics
    app.state.client_registry = registry
    app.state.token_manager = token_manager
    app.state.task_bridge = TaskBridge(settings, executor=executor, metrics=metrics)
    app.state.file_writer = FileWriter(settings.FILES_DIR, metrics=metrics)

    register_exception_handlers(app)

    # Added innermost first; RecoveryMiddleware ends up outermost.
    app.add_middleware(TimeoutMiddleware)
    app.add_middleware(MetricsMiddleware, metrics=metrics)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(RecoveryMiddleware)

    app.include_router(token_routes.router)
    app.include_router(health_routes.router)
    app.include_router(task_routes.router)
    app.include_router(file_routes.router)
    return app


def run() -> None:
    """Entry point for `omnidrop-server`."""
    try:
        settings = get_app_settings()
    except ValidationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    setup_logging(settings)
    try:
        app = create_app(settings)
    except RegistryError as e:
        logger.error(f"Failed to load OAuth client registry: {e}")
        sys.exit(1)

    logger.info(f"Starting OmniDrop {__version__} on port {settings.PORT}")
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=settings.PORT,
        log_config=None,
        timeout_keep_alive=KEEP_ALIVE_SECONDS,
        timeout_graceful_shutdown=GRACEFUL_SHUTDOWN_SECONDS,
    )


if __name__ == "__main__":
    run()
