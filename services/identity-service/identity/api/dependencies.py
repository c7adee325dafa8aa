"""FastAPI dependencies resolving services and caller identity from app state."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Header, HTTPException, Request, status
from prometheus_client import Counter

from ..domain.authentication import AuthenticationService
from ..domain.errors import InvalidToken, RateLimitError
from ..domain.password_reset import PasswordResetService
from ..domain.registration import RegistrationService
from ..security.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

RATE_LIMITED = Counter(
    "identity_rate_limited_total",
    "Requests rejected by the auth rate limiter.",
    ["operation"],
)


@dataclass(slots=True)
class IdentityServices:
    """Services and shared state constructed once at startup."""

    registration: RegistrationService
    password_reset: PasswordResetService
    authentication: AuthenticationService
    rate_limiter: RateLimiter
    trusted_proxy_hops: int = 0


def get_services(request: Request) -> IdentityServices:
    """Resolve the ``IdentityServices`` bundle stored on the FastAPI application state."""
    services: IdentityServices = request.app.state.identity
    return services


def client_key(request: Request, trusted_proxy_hops: int = 0) -> str:
    """Return the rate-limit key for the caller.

    ``X-Forwarded-For`` is only read when the service sits behind
    ``trusted_proxy_hops`` proxies that each append the address they saw; the
    entry written by the outermost trusted proxy is the client. Without
    trusted proxies the header is caller-controlled and ignored.
    """
    if trusted_proxy_hops > 0:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            hops = [part.strip() for part in forwarded.split(",") if part.strip()]
            if hops:
                return hops[-min(trusted_proxy_hops, len(hops))]
    if request.client is not None:
        return request.client.host
    return "unknown"


def admit(request: Request, services: IdentityServices, operation: str) -> None:
    """Reject the request before any store or hashing work when the caller's bucket is empty."""
    key = client_key(request, services.trusted_proxy_hops)
    if not services.rate_limiter.allow(f"auth:{key}"):
        RATE_LIMITED.labels(operation=operation).inc()
        raise RateLimitError(retry_after=services.rate_limiter.retry_after_seconds)


def require_session(
    request: Request,
    authorization: str | None = Header(default=None),
) -> dict[str, Any]:
    """Verify the ``Authorization: Bearer <token>`` header and return its claims."""
    if not authorization:
        logger.info("no authorization header")
        raise _unauthorized()
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        logger.info("invalid authorization header format")
        raise _unauthorized()
    try:
        return get_services(request).authentication.verify(parts[1])
    except InvalidToken as exc:
        raise _unauthorized() from exc


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )
