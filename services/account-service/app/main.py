"""FastAPI application wiring for the account service."""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import router as v1_router
from .config import Settings, get_settings
from .domain.contracts import AccountLocks, IdentityProvider, MailSender
from .domain.service import AccountService
from .domain.token_service import TokenService
from .integrations.mail import LoggingMailSender, SmtpMailSender
from .integrations.profiles import ProfileDirectoryClient
from .repository import PostgresAccountStore
from .security.hashing import build_password_hasher
from .security.locks import InMemoryAccountLocks
from .security.redis_locks import RedisAccountLocks

logger = logging.getLogger(__name__)

settings = get_settings()


def _build_account_locks(settings: Settings) -> AccountLocks:
    """Instantiate the configured lock backend, preferring Redis when available."""
    if settings.lock_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("account locks configured for redis backend at %s", settings.redis_url)
            return RedisAccountLocks(client, timeout_seconds=settings.lock_timeout_seconds)
        except Exception as exc:  # pragma: no cover - defensive
            logger.warning("redis account locks unavailable, falling back to in-memory: %s", exc)

    logger.info("account locks using in-memory backend")
    return InMemoryAccountLocks()


def _build_mailer(settings: Settings) -> MailSender:
    if settings.use_mail:
        return SmtpMailSender.from_settings(settings)
    return LoggingMailSender()


def _build_identity(settings: Settings) -> IdentityProvider | None:
    if settings.use_external_identity:
        return ProfileDirectoryClient.from_settings(settings)
    return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    store = PostgresAccountStore(pool)
    store.ensure_schema()
    locks = _build_account_locks(settings)
    identity = _build_identity(settings)

    app.state.pool = pool
    app.state.token_service = TokenService(store, locks, identity, settings)
    app.state.account_service = AccountService(
        store,
        locks,
        _build_mailer(settings),
        identity,
        build_password_hasher(settings.password_hash_scheme),
        settings,
    )
    try:
        yield
    finally:
        pool.close()
        pool.wait_close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# CORS for local frontend dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_origin_regex=".*",  # dev: allow any origin
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


app.include_router(v1_router)


# Prometheus metrics endpoint for Prometheus scrapes
@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
