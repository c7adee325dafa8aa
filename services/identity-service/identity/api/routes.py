"""HTTP route definitions for the identity service."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from prometheus_client import Counter
from pydantic import BaseModel

from schemas import SessionClaims

from ..domain.errors import IdentityError, InternalError, RateLimitError
from .dependencies import IdentityServices, admit, get_services, require_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth")

AUTH_EVENTS = Counter(
    "identity_auth_events_total",
    "Outcomes of account lifecycle and login requests.",
    ["operation", "outcome"],
)

RESET_ACCEPTED = "If your email exists in our system, you will receive password reset instructions."


class InitiateRegistrationRequest(BaseModel):
    """Payload starting a registration; only the email is collected up front."""

    email: str


class CompleteRegistrationRequest(BaseModel):
    """Confirmation token from the verification email plus the chosen password."""

    token: str
    password: str


class InitiatePasswordResetRequest(BaseModel):
    email: str


class CompletePasswordResetRequest(BaseModel):
    token: str
    new_password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class MessageResponse(BaseModel):
    message: str


class LoginResponse(BaseModel):
    """Session token returned after a successful login."""

    token: str
    token_type: str = "bearer"
    expires_in: int


@router.post("/register/initiate", response_model=MessageResponse)
def initiate_registration(
    request: Request,
    payload: InitiateRegistrationRequest,
    services: IdentityServices = Depends(get_services),
) -> MessageResponse:
    """Create an unconfirmed account and send its confirmation email."""
    try:
        admit(request, services, "register_initiate")
        services.registration.initiate(payload.email)
    except IdentityError as exc:
        raise _http_error("register_initiate", exc) from exc
    AUTH_EVENTS.labels(operation="register_initiate", outcome="ok").inc()
    return MessageResponse(message="Please check your email to complete registration.")


@router.post("/register/complete", response_model=MessageResponse)
def complete_registration(
    request: Request,
    payload: CompleteRegistrationRequest,
    services: IdentityServices = Depends(get_services),
) -> MessageResponse:
    """Set the password for a pending account and activate it."""
    try:
        admit(request, services, "register_complete")
        services.registration.complete(payload.token, payload.password)
    except IdentityError as exc:
        raise _http_error("register_complete", exc) from exc
    AUTH_EVENTS.labels(operation="register_complete", outcome="ok").inc()
    return MessageResponse(message="Registration completed successfully. You can now log in.")


@router.post("/password/reset", response_model=MessageResponse)
def initiate_password_reset(
    request: Request,
    payload: InitiatePasswordResetRequest,
    services: IdentityServices = Depends(get_services),
) -> MessageResponse:
    """Answer identically whether or not the email is registered."""
    try:
        admit(request, services, "password_reset")
    except IdentityError as exc:
        raise _http_error("password_reset", exc) from exc
    try:
        services.password_reset.initiate(payload.email)
    except InternalError:
        # already logged by the service; the response must not differ
        AUTH_EVENTS.labels(operation="password_reset", outcome="internal_error").inc()
    else:
        AUTH_EVENTS.labels(operation="password_reset", outcome="ok").inc()
    return MessageResponse(message=RESET_ACCEPTED)


@router.post("/password/complete", response_model=MessageResponse)
def complete_password_reset(
    request: Request,
    payload: CompletePasswordResetRequest,
    services: IdentityServices = Depends(get_services),
) -> MessageResponse:
    try:
        admit(request, services, "password_complete")
        services.password_reset.complete(payload.token, payload.new_password)
    except IdentityError as exc:
        raise _http_error("password_complete", exc) from exc
    AUTH_EVENTS.labels(operation="password_complete", outcome="ok").inc()
    return MessageResponse(
        message="Password has been reset successfully. You can now log in with your new password."
    )


@router.post("/login", response_model=LoginResponse)
def login(
    request: Request,
    payload: LoginRequest,
    services: IdentityServices = Depends(get_services),
) -> LoginResponse:
    """Exchange email and password for a signed session token."""
    try:
        admit(request, services, "login")
        token = services.authentication.authenticate(payload.email, payload.password)
    except IdentityError as exc:
        raise _http_error("login", exc) from exc
    AUTH_EVENTS.labels(operation="login", outcome="ok").inc()
    return LoginResponse(token=token, expires_in=services.authentication.session_ttl_seconds)


@router.get("/me", response_model=SessionClaims)
def current_session(claims: dict[str, Any] = Depends(require_session)) -> SessionClaims:
    """Return the claims of the caller's session token."""
    return SessionClaims(**claims)


def _http_error(operation: str, exc: IdentityError) -> HTTPException:
    AUTH_EVENTS.labels(operation=operation, outcome=type(exc).__name__).inc()
    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        headers = {"Retry-After": str(exc.retry_after)}
    return HTTPException(status_code=exc.status_code, detail=exc.message, headers=headers)
