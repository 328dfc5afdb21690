"""
Authentication Routes

Endpoints:
- POST /auth/register - Create an account and start a session
- POST /auth/login - Email-only login
- POST /auth/logout - Clear session
- GET /auth/me - Get current identity

A matching developer secret at registration grants the DEV role. The JWT
is returned both as an HttpOnly cookie and in the response body.
"""

import logging

from fastapi import APIRouter, HTTPException, Response, status

from classhub.api.deps import (
    CurrentUser,
    Gateway,
    clear_auth_cookie,
    create_access_token,
    set_auth_cookie,
)
from classhub.config import get_settings
from classhub.engine.identity import new_identity
from classhub.errors import ConflictError
from classhub.schemas.auth import TokenResponse
from classhub.schemas.users import Identity, LoginRequest, RegisterRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])
settings = get_settings()


def _issue(identity: Identity, response: Response) -> TokenResponse:
    access_token = create_access_token(identity.id)
    set_auth_cookie(response, access_token)
    return TokenResponse(
        access_token=access_token,
        expires_in=settings.jwt_expire_minutes * 60,
        user=identity,
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, response: Response, gateway: Gateway) -> TokenResponse:
    """Register a new member. Email is case-folded and must be unused."""
    identity = new_identity(request.name, request.email, request.secret, settings.dev_registration_secret)
    try:
        identity = await gateway.register_user(identity)
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    logger.info("Registered %s as %s", identity.id, identity.role.value)
    return _issue(identity, response)


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest, response: Response, gateway: Gateway) -> TokenResponse:
    identity = await gateway.get_user_by_email(request.email)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No account exists for this email",
        )
    return _issue(identity, response)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(response: Response) -> None:
    """
    Clear the authentication session.

    This only clears the cookie. A JWT stored elsewhere stays valid until
    expiry, unless the account is deleted.
    """
    clear_auth_cookie(response)


@router.get("/me", response_model=Identity)
async def get_me(current_user: CurrentUser) -> Identity:
    return current_user
