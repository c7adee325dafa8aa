"""FastAPI application wiring for the identity service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.dependencies import IdentityServices
from .api.routes import router as auth_router
from .config import Settings, get_settings
from .domain.authentication import AuthenticationService
from .domain.cleanup import CleanupSweeper
from .domain.contracts import AccountStore, Notifier
from .domain.password_reset import PasswordResetService
from .domain.registration import RegistrationService
from .notifier import SmtpNotifier
from .repository import AccountRepository
from .security.passwords import CredentialHasher
from .security.rate_limiter import RateLimiter, TokenBucketRateLimiter
from .security.redis_rate_limiter import RedisTokenBucketRateLimiter
from .security.tokens import TokenIssuer

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("rate limiter configured for redis backend at %s", settings.redis_url)
            return RedisTokenBucketRateLimiter(
                client,
                capacity=settings.rate_limit_capacity,
                refill_per_second=settings.rate_limit_refill_per_second,
            )
        except Exception as exc:  # pragma: no cover - depends on deployment
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return TokenBucketRateLimiter(
        capacity=settings.rate_limit_capacity,
        refill_per_second=settings.rate_limit_refill_per_second,
        max_keys=settings.rate_limit_max_keys,
    )


def build_services(
    settings: Settings,
    store: AccountStore,
    notifier: Notifier,
    rate_limiter: RateLimiter,
) -> IdentityServices:
    """Construct the identity services around the given collaborators."""
    hasher = CredentialHasher(rounds=settings.bcrypt_rounds)
    issuer = TokenIssuer(
        settings.jwt_secret,
        issuer=settings.jwt_issuer,
        ttl_seconds=settings.jwt_ttl_seconds,
    )
    token_options = {
        "base_url": settings.app_base_url,
        "token_ttl_seconds": settings.token_ttl_seconds,
        "min_password_length": settings.min_password_length,
    }
    return IdentityServices(
        registration=RegistrationService(store, hasher, notifier, **token_options),
        password_reset=PasswordResetService(store, hasher, notifier, **token_options),
        authentication=AuthenticationService(store, hasher, issuer),
        rate_limiter=rate_limiter,
        trusted_proxy_hops=settings.trusted_proxy_hops,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services, sweeper) for the app lifecycle."""
    timeout_ms = int(settings.store_timeout_seconds * 1000)
    pool = ConnectionPool(
        settings.database_url,
        open=False,
        timeout=settings.store_timeout_seconds,
        kwargs={"options": f"-c statement_timeout={timeout_ms}"},
    )
    pool.open()
    repository = AccountRepository(pool)
    repository.ensure_schema()

    notifier = SmtpNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.smtp_from,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        timeout=settings.store_timeout_seconds,
    )
    app.state.pool = pool
    app.state.identity = build_services(settings, repository, notifier, build_rate_limiter(settings))

    sweeper = CleanupSweeper(
        repository,
        interval_seconds=settings.cleanup_interval_seconds,
        retention_seconds=settings.unconfirmed_retention_seconds,
    )
    if settings.cleanup_enabled:
        sweeper.start()
    app.state.sweeper = sweeper
    try:
        yield
    finally:
        sweeper.stop()
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# CORS for local frontend dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(auth_router)
