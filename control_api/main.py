"""Main FastAPI application for the LAN stream control API."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST

from control_api.config import ApiSettings, get_settings
from control_api.middleware.error_handler import setup_exception_handlers
from control_api.routes import streams, system
from control_api.services import ServiceContainer, build_services
from logging_module import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown.

    Builds the service container unless one was injected, runs an initial
    reconciliation, starts the reconciler loop, and tears everything down
    on exit.

    Args:
        app: FastAPI application instance.
    """
    logger.info("Starting LAN stream control API...")

    services: Optional[ServiceContainer] = getattr(app.state, "services", None)
    if services is None:
        setup_logging()
        services = build_services()
        app.state.services = services

    try:
        await services.startup()
        logger.info(f"Control API ready on port {services.settings.port}")
        yield

    except Exception as e:
        logger.error(f"Failed to start control API: {e}", exc_info=True)
        raise

    finally:
        logger.info("Shutting down control API...")
        await services.close()
        logger.info("Shutdown complete")


def create_app(
    services: Optional[ServiceContainer] = None, settings: Optional[ApiSettings] = None
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        services: Pre-built service container (built in the lifespan if not provided)
        settings: API settings (read from the environment if not provided)

    Returns:
        FastAPI: Configured application.
    """
    settings = settings or (services.settings if services else get_settings())

    app = FastAPI(
        title=settings.app_name,
        description="Control plane for LAN audio streams pushed to Icecast",
        version=settings.app_version,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Setup exception handlers
    setup_exception_handlers(app)

    # Include routers
    app.include_router(
        streams.router, prefix=f"{settings.api_prefix}/streams", tags=["Streams"]
    )
    app.include_router(
        system.router, prefix=f"{settings.api_prefix}/system", tags=["System & Icecast"]
    )

    @app.get("/")
    async def root():
        """Root endpoint with API information.

        Returns:
            dict: API information.
        """
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "status": "running",
            "docs_url": "/docs",
            "endpoints": {
                "streams": f"{settings.api_prefix}/streams",
                "system": f"{settings.api_prefix}/system",
                "metrics": "/metrics",
            },
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint.

        Returns:
            dict: Liveness plus the last known Icecast state (no I/O).
        """
        current = getattr(request.app.state, "services", None)
        body = {
            "status": "healthy",
            "service": settings.app_name,
            "timestamp": datetime.now().isoformat(),
        }
        if current is not None:
            snapshot = current.controller.snapshot()
            body["icecast"] = {"status": snapshot["status"], "health": snapshot["health"]}
            body["streams"] = len(current.orchestrator.registry)
        return body

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics in text format."""
        current = getattr(request.app.state, "services", None)
        if current is None or current.metrics is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Metrics are disabled"
            )
        return Response(content=current.metrics.generate_metrics(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


def main() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "control_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info",
    )


if __name__ == "__main__":
    main()
