"""
FastAPI dependencies for authentication and authorization.

Security model:
- JWT stored in HttpOnly cookie (recommended) or Authorization header
- The token only carries the user id; role is read from the store on every
  request, so role changes and account deletion take effect immediately
- Role checks happen here, not in the gateway
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated
from uuid import UUID

from fastapi import Cookie, Depends, Header, HTTPException, Response, status
from jose import JWTError, jwt

from classhub.config import get_settings
from classhub.errors import ConfigurationError
from classhub.schemas.users import Identity
from classhub.realtime import RealtimeBroker, broker
from classhub.services import assistant_service, persistence_gateway
from classhub.services.assistant import AssistantService
from classhub.services.gateway import PersistenceGateway

settings = get_settings()

ACCESS_COOKIE = "access_token"


# =============================================================================
# JWT UTILITIES
# =============================================================================


def create_access_token(user_id: UUID) -> str:
    """
    Create a JWT access token for a user.

    Payload is only `sub` (user id) and `exp`; no profile data.
    """
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)
    payload = {
        "sub": str(user_id),
        "exp": expire,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> UUID | None:
    """
    Decode and validate a JWT access token.

    Returns user_id if valid, None if invalid/expired.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        user_id_str = payload.get("sub")
        if user_id_str is None:
            return None
        return UUID(user_id_str)
    except (JWTError, ValueError):
        return None


def set_auth_cookie(response: Response, token: str) -> None:
    # Cross-domain deployments need samesite="none" + secure
    response.set_cookie(
        key=ACCESS_COOKIE,
        value=token,
        httponly=True,
        secure=settings.cookie_cross_domain or settings.environment != "development",
        samesite="none" if settings.cookie_cross_domain else "lax",
        max_age=settings.jwt_expire_minutes * 60,
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(
        key=ACCESS_COOKIE,
        httponly=True,
        secure=settings.cookie_cross_domain or settings.environment != "development",
        samesite="none" if settings.cookie_cross_domain else "lax",
    )


# =============================================================================
# GATEWAY
# =============================================================================


def get_gateway() -> PersistenceGateway:
    """The process-wide persistence gateway. Overridden in tests."""
    return persistence_gateway


Gateway = Annotated[PersistenceGateway, Depends(get_gateway)]


# =============================================================================
# AUTHENTICATION DEPENDENCIES
# =============================================================================


async def get_token_from_request(
    authorization: Annotated[str | None, Header()] = None,
    access_token: Annotated[str | None, Cookie()] = None,
) -> str:
    """
    Extract JWT token from request.

    Supports two methods (in order of preference):
    1. HttpOnly cookie named 'access_token'
    2. Authorization header: 'Bearer <token>'
    """
    if access_token:
        return access_token

    if authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def resolve_identity(token: str, gateway: PersistenceGateway) -> Identity | None:
    """Identity for a token, or None if the token is bad or the user is gone."""
    user_id = decode_access_token(token)
    if user_id is None:
        return None
    return await gateway.get_user(user_id)


async def get_current_user(
    token: Annotated[str, Depends(get_token_from_request)],
    gateway: Gateway,
) -> Identity:
    """
    Validate JWT and return the current identity.

    Raises 401 if:
    - Token is missing, invalid, or expired
    - User no longer exists (remote deletion evicts REST callers too)
    """
    try:
        identity = await resolve_identity(token, gateway)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e

    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


# Type alias for dependency injection
CurrentUser = Annotated[Identity, Depends(get_current_user)]


# =============================================================================
# AUTHORIZATION HELPERS
# =============================================================================


async def require_admin(current_user: CurrentUser) -> Identity:
    """ADMIN or DEV."""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required",
        )
    return current_user


async def require_dev(current_user: CurrentUser) -> Identity:
    if not current_user.is_dev:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Developer access required",
        )
    return current_user


AdminUser = Annotated[Identity, Depends(require_admin)]
DevUser = Annotated[Identity, Depends(require_dev)]


# =============================================================================
# REALTIME
# =============================================================================


def get_realtime() -> RealtimeBroker:
    return broker


def get_assistant() -> AssistantService:
    return assistant_service


Realtime = Annotated[RealtimeBroker, Depends(get_realtime)]
Assistant = Annotated[AssistantService, Depends(get_assistant)]
