"""FastAPI application factory for the realtime event source.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown of the Redis pool that every
WebSocket subscribes through.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from alpinecrm import __version__
from alpinecrm.api import api_router
from alpinecrm.config import settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs
    at shutdown.
    """
    logger.info(
        "alpinecrm.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from alpinecrm.realtime.pubsub import close_redis, init_redis
    try:
        await init_redis()
        logger.info("alpinecrm.redis_connected", url=settings.redis_url)
    except Exception as e:
        # Sockets still accept connections; they just never receive events
        logger.warning("alpinecrm.redis_unavailable", error=str(e))

    yield

    logger.info("alpinecrm.shutdown")
    await close_redis()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="AlpineCRM Realtime",
        description="Domain event fan-out for AlpineCRM client sessions",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from alpinecrm.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: alpinecrm.main:app)
app = create_app()
