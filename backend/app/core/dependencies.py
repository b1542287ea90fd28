"""
FastAPI dependency injection functions.

Authorization happens upstream: routes receive user/session ids from the
calling chat layer as given.
"""

from fastapi import HTTPException, Request, status

from app.core.services import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Dependency: the service container built during lifespan startup.

    Raises:
        HTTPException 503: If the application has not finished starting.
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dịch vụ chưa sẵn sàng",
        )
    return services
