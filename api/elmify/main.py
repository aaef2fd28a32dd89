from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import settings
from .errors import register_exception_handlers
from .middleware import RateLimitMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from .routers import (
    admin,
    categories,
    collections,
    favorites,
    lectures,
    playback,
    playlists,
    speakers,
    stats,
    system,
    users,
)

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

_STARTUP_COMPLETE = False


def _alembic_config() -> Config:
    base_dir = Path(__file__).resolve().parent.parent
    cfg = Config(str(base_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(base_dir / "alembic"))
    return cfg


def run_migrations() -> None:
    logger.info("run_migrations: Starting...")
    from .db import engine

    alembic_cfg = _alembic_config()
    try:
        with engine.connect() as connection:
            current_heads = set(MigrationContext.configure(connection).get_current_heads())
        heads = set(ScriptDirectory.from_config(alembic_cfg).get_heads())
        if current_heads == heads:
            logger.info(f"Database is up to date (revision: {sorted(heads)}), skipping migrations.")
            return

        logger.info(f"Current revision(s): {sorted(current_heads)}, upgrading to {sorted(heads)}")
        # Alembic opens its own connection
        engine.dispose()
        command.upgrade(alembic_cfg, "heads")
        logger.info("run_migrations: Completed successfully.")
    except Exception as e:
        logger.error(f"run_migrations: Error occurred: {e}", exc_info=True)
        raise


def run_startup_tasks() -> None:
    global _STARTUP_COMPLETE
    if _STARTUP_COMPLETE:
        logger.info("run_startup_tasks: Already completed, skipping.")
        return
    if settings.RUN_MIGRATIONS_ON_STARTUP:
        run_migrations()
    else:
        logger.info("run_startup_tasks: RUN_MIGRATIONS_ON_STARTUP is off, skipping migrations.")
    _STARTUP_COMPLETE = True
    logger.info("Startup tasks completed.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    # Server won't accept requests until these complete
    run_startup_tasks()
    logger.info(f"Elmify API server ready (environment: {settings.ENVIRONMENT})")
    yield
    logger.info("Shutting down application...")


app = FastAPI(
    title="Elmify API",
    version="1.0.0",
    description="Audio lecture catalog and streaming API",
    lifespan=lifespan,
)

register_exception_handlers(app)

if settings.REQUEST_LOGGING:
    app.add_middleware(RequestLoggingMiddleware)

if settings.RATE_LIMIT_ENABLED:
    app.add_middleware(RateLimitMiddleware)
else:
    logger.warning("Rate limiting is disabled (RATE_LIMIT_ENABLED=false)")

app.add_middleware(SecurityHeadersMiddleware)

# CORS Configuration - restrict to specific origins
# In production, set CORS_ORIGINS environment variable to comma-separated list of allowed origins
cors_origins_str = settings.CORS_ORIGINS
allow_all = cors_origins_str.strip() == "*"
if allow_all:
    logger.warning(
        "CORS is configured to allow all origins. "
        "This is insecure for production. Set CORS_ORIGINS to specific domains."
    )
cors_origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]

# Added last so it wraps everything, including 429 responses
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    # Browsers reject credentials with a wildcard origin
    allow_credentials=not allow_all,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
        "Range",
        "X-Requested-With",
    ],
    expose_headers=[
        "Content-Range",
        "Content-Length",
        "Accept-Ranges",
        "Retry-After",
        "X-RateLimit-Remaining",
    ],
    max_age=600,  # Cache preflight requests for 10 minutes
)


# Include all routers
app.include_router(system.router)
app.include_router(speakers.router)
app.include_router(collections.router)
app.include_router(lectures.router)
app.include_router(categories.router)
app.include_router(users.router)
app.include_router(favorites.router)
app.include_router(playback.router)
app.include_router(stats.router)
app.include_router(playlists.router)
app.include_router(admin.router)
