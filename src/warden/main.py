"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis, session sweeper,
database engine). Middleware, CORS, exception handlers and routers are
all registered here.

Error rendering lives in exactly one place: services raise WardenError
subclasses, and the handler below turns them into
{"detail": ..., "error": ...} with the right status and headers.
"""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError

from warden import __version__
from warden.api import api_router
from warden.config import settings
from warden.errors import DependencyFailure, WardenError
from warden.log import configure_logging
from warden.storage.local import LocalStorage, MediaFiles

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs
    at shutdown.
    """
    logger.info(
        "warden.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        storage_backend=settings.storage_backend,
    )

    from warden.cache import close_redis, init_redis
    try:
        await init_redis()
        logger.info("warden.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("warden.redis_unavailable", error=str(e))
        # Redis is optional, only rate limiting uses it

    from warden.services.session_sweeper import SessionSweeper
    sweeper = SessionSweeper()
    sweeper_task = asyncio.create_task(sweeper.run_loop())

    yield

    logger.info("warden.shutdown")

    sweeper.stop()
    sweeper_task.cancel()
    try:
        await sweeper_task
    except asyncio.CancelledError:
        pass

    await close_redis()

    from warden.db.engine import engine
    await engine.dispose()


# ─── Error handlers ──────────────────────────────────────


async def handle_warden_error(request: Request, exc: WardenError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("http.dependency_failure", error=exc.code, detail=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers(),
    )


async def handle_database_unavailable(request: Request, exc: Exception) -> JSONResponse:
    """Connectivity errors that escaped a service become a retryable 503."""
    logger.error("db.unavailable", error=exc.__class__.__name__, detail=str(exc))
    return await handle_warden_error(request, DependencyFailure())


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title="Warden",
        description="Authentication, session lifecycle, tier authorization and avatar uploads",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_exception_handler(WardenError, handle_warden_error)
    app.add_exception_handler(OperationalError, handle_database_unavailable)
    app.add_exception_handler(InterfaceError, handle_database_unavailable)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from warden.middleware.rate_limit import RateLimitMiddleware
    from warden.middleware.request_id import RequestIdMiddleware
    from warden.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    # Local backend: serve stored objects straight from disk.
    if settings.storage_backend == "local" and settings.storage_public_base_url.startswith("/"):
        Path(settings.storage_local_dir).mkdir(parents=True, exist_ok=True)
        app.mount(
            settings.storage_public_base_url,
            MediaFiles(LocalStorage(settings.storage_local_dir)),
            name="media",
        )

    return app


# Default app instance (used by uvicorn: warden.main:app)
app = create_app()
