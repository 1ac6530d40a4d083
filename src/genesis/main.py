"""FastAPI application factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from genesis.config import Settings, get_settings
from genesis.database import close_db, create_tables, get_session_factory, init_db
from genesis.health.router import router as health_router
from genesis.middleware import setup_middleware
from genesis.redis_client import close_redis, get_redis, init_redis
from genesis.stage.router import router as stage_router
from genesis.stage.service import StageService
from genesis.state.feed import RedisChangeFeed
from genesis.state.memory import InMemoryStateStore
from genesis.state.sql import SqlStateStore
from genesis.state.store import StateStore
from genesis.ws.bridge import SessionBroadcaster
from genesis.ws.manager import manager
from genesis.ws.router import router as ws_router

logger = structlog.get_logger()


def install_store(app: FastAPI, store: StateStore, settings: Settings) -> StageService:
    """Wire the stage service and the WebSocket broadcaster onto ``store``."""
    broadcaster = SessionBroadcaster(store, app.state.connections)
    broadcaster.start()
    service = StageService.from_settings(store, settings, **broadcaster.hooks())
    app.state.broadcaster = broadcaster
    app.state.stage_service = service
    return service


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    owns_store = getattr(app.state, "stage_service", None) is None
    feed: RedisChangeFeed | None = None
    feed_task: asyncio.Task | None = None

    if owns_store:
        if settings.store_backend == "memory":
            store: StateStore = InMemoryStateStore()
        else:
            await init_db(settings.database_url)
            await create_tables()
            await init_redis(settings.redis_url)
            redis = get_redis()
            store = SqlStateStore(get_session_factory(), redis, settings.change_channel_prefix)

            # Start the Redis pub/sub -> local subscriptions feed
            feed = RedisChangeFeed(redis, store.subscriptions, settings.change_channel_prefix)
            feed_task = asyncio.create_task(feed.start())
        install_store(app, store, settings)
        logger.info("stage_service_started", backend=settings.store_backend)

    yield

    await app.state.stage_service.close()
    app.state.broadcaster.stop()

    if feed is not None and feed_task is not None:
        await feed.stop()
        feed_task.cancel()
        try:
            await feed_task
        except asyncio.CancelledError:
            pass

    if owns_store and settings.store_backend != "memory":
        await close_db()
        await close_redis()


def create_app(store: StateStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Passing ``store`` wires the service immediately (tests, embedding);
    otherwise the lifespan builds the store named by ``CG_STORE_BACKEND``.
    """
    settings = get_settings()

    app = FastAPI(
        title="Cyber Genesis Stage Service",
        description="Ranking, elimination and stage progression for the Cyber Genesis game show",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.connections = manager
    app.state.stage_service = None
    if store is not None:
        install_store(app, store, settings)

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(stage_router)
    app.include_router(ws_router)

    return app


app = create_app()
