"""
Amora — Auth API

Account creation, sign-in and sign-out.  Signing up or in also creates the
caller's directory record on first use.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, status

from amora.api.deps import Services, get_services, get_token
from amora.schemas.auth import Credentials, SessionToken

logger = structlog.get_logger("amora.api.auth")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST /signup — Create an account
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/signup",
    response_model=SessionToken,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account and sign in",
)
async def sign_up(
    payload: Credentials,
    services: Services = Depends(get_services),
) -> SessionToken:
    session = services.client_session()
    try:
        return await session.sign_up(payload.email, payload.password)
    finally:
        session.close()


# ──────────────────────────────────────────────────────────────────────────────
# POST /signin — Sign in with email and password
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/signin",
    response_model=SessionToken,
    summary="Sign in",
)
async def sign_in(
    payload: Credentials,
    services: Services = Depends(get_services),
) -> SessionToken:
    session = services.client_session()
    try:
        return await session.sign_in(payload.email, payload.password)
    finally:
        session.close()


# ──────────────────────────────────────────────────────────────────────────────
# POST /signout — Revoke the current session token
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/signout",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Sign out",
)
async def sign_out(
    token: str = Depends(get_token),
    services: Services = Depends(get_services),
) -> None:
    services.auth_provider.sign_out(token)
