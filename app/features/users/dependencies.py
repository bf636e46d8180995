"""
FastAPI dependencies for authentication.
"""
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.services import Services
from app.features.users.auth import verify_session_token
from app.features.users.gateway import AuthGateway
from app.features.users.models import UserProfile


security = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_optional_gateway(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    services: Annotated[Services, Depends(get_services)],
) -> Optional[AuthGateway]:
    """
    The live gateway named by the bearer token, or None.

    An invalid signature is rejected outright; a well-formed token whose
    session has ended reads as anonymous.
    """
    if credentials is None:
        return None
    payload = verify_session_token(credentials.credentials)
    sid = payload.get("sid")
    if not sid:
        return None
    gateway = services.registry.get(sid)
    if gateway is not None and gateway.session is not None:
        # Enforce expiry between scheduler ticks
        await gateway.session.check()
        if not gateway.is_authenticated():
            return None
    return gateway


async def get_current_gateway(
    gateway: Annotated[Optional[AuthGateway], Depends(get_optional_gateway)],
) -> AuthGateway:
    """
    Require a live session.

    Usage:
        @router.post("/logout")
        async def logout(gateway: AuthGateway = Depends(get_current_gateway)):
            ...
    """
    if gateway is None or not gateway.is_authenticated():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired or not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return gateway


async def get_current_user(
    gateway: Annotated[AuthGateway, Depends(get_current_gateway)],
) -> UserProfile:
    """Profile of the authenticated user; blocked accounts are refused."""
    if not gateway.is_active():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is blocked",
        )
    return gateway.user
