"""FastAPI application for Thread Tracker introspection.

Read-only endpoints over the store: health, usage statistics, and per-user
scheduled messages and watchers.
"""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request

from threadtracker import __version__
from threadtracker.api.health import router as health_router
from threadtracker.api.stats import router as stats_router
from threadtracker.api.users import router as users_router
from threadtracker.logging import get_logger

if TYPE_CHECKING:
    from threadtracker.config import Config

log = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("api_starting")
    yield
    log.info("api_stopping")


def create_app(config: "Config") -> FastAPI:
    """Create and configure the FastAPI application.

    The caller sets ``app.state.db`` to the database engine before serving.

    Args:
        config: Application configuration.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="Thread Tracker API",
        description="Introspection into tracked threads, watchers and scheduled messages.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.config = config

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        log.info(
            "request_complete",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
        )
        return response

    app.include_router(health_router)
    app.include_router(stats_router)
    app.include_router(users_router)

    return app
