from fastapi import Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from portal.middleware import PortalHTTPException
from portal.player.cache import DashboardCache
from portal.player.session import SessionRegistry

_bearer = HTTPBearer(auto_error=False)


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_dashboard_cache(request: Request) -> DashboardCache:
    return request.app.state.dashboard


async def get_access_token(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> str:
    """Bearer token forwarded as-is to the backend, which validates it."""
    if credentials is None or not credentials.credentials:
        raise PortalHTTPException(
            status.HTTP_401_UNAUTHORIZED,
            "not_authenticated",
            "Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials
