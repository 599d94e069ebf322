"""FastAPI dependencies resolving services from the application state."""

from fastapi import Depends, HTTPException, Request, status

from control_api.services import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Get the service container built by the lifespan handler.

    Raises:
        HTTPException: If the services are not initialized yet
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services are not initialized",
        )
    return services


def get_orchestrator(services: ServiceContainer = Depends(get_services)):
    return services.orchestrator


def get_controller(services: ServiceContainer = Depends(get_services)):
    return services.controller
