"""FastAPI application: wires the feed, the coordinator and the realtime layer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import Settings, configure_logging
from .market.factory import create_feed_client
from .market.interface import FeedClient
from .market.retry import RetryPolicy
from .market.store import InMemoryMarketStore, MarketStore
from .market.sync import SyncCoordinator
from .market.watchlists import WatchlistProvider
from .realtime.auth import TokenVerifier
from .realtime.dispatcher import BroadcastDispatcher
from .realtime.engine import SubscriptionEngine
from .realtime.gateway import RealtimeGateway, create_ws_router
from .realtime.heartbeat import HeartbeatMonitor
from .realtime.registry import ConnectionRegistry
from .routes import create_sync_router, register_exception_handlers

logger = logging.getLogger(__name__)

STARTUP_RETRY_POLICY = RetryPolicy.exponential(base=1.0, factor=2.0, max_delay=60.0)


async def start_with_retry(coordinator: SyncCoordinator, policy: RetryPolicy = STARTUP_RETRY_POLICY) -> None:
    """Keep calling ``coordinator.start()`` until it succeeds or the policy gives up.

    The app serves clients in the meantime; they just see no live ticks yet.
    """
    attempt = 0
    while True:
        try:
            await coordinator.start()
            return
        except Exception as e:
            attempt += 1
            if not policy.should_retry(attempt):
                logger.error("Sync coordinator failed to start after %d attempts: %s", attempt, e)
                return
            delay = policy.delay_for(attempt)
            logger.warning("Sync coordinator start failed (%s); retrying in %.1fs", e, delay)
            await asyncio.sleep(delay)


def create_app(
    settings: Settings | None = None,
    *,
    feed: FeedClient | None = None,
    store: MarketStore | None = None,
    watchlists: WatchlistProvider | None = None,
) -> FastAPI:
    """Build the application. Collaborators default to what ``settings`` selects.

    Components are constructed here so the routers can be mounted up front;
    background work (sweep, heartbeat, feed) only runs inside the lifespan.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    feed = feed or create_feed_client(settings)
    store = store or InMemoryMarketStore()
    verifier = TokenVerifier(settings.jwt_secret, settings.jwt_issuer, settings.jwt_audience)

    registry = ConnectionRegistry()
    dispatcher = BroadcastDispatcher(registry, store, sweep_interval=settings.sweep_interval)
    engine = SubscriptionEngine(registry, dispatcher, store, watchlists)
    heartbeat = HeartbeatMonitor(registry, dispatcher, interval=settings.heartbeat_interval)
    coordinator = SyncCoordinator(
        feed,
        store,
        dispatcher,
        settings.tracked_symbols,
        resync_interval=settings.resync_interval,
        restart_delay=settings.restart_delay,
    )
    gateway = RealtimeGateway(verifier, registry, engine, dispatcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await dispatcher.start()
        await heartbeat.start()
        startup = asyncio.create_task(start_with_retry(coordinator), name="sync-startup")
        logger.info("tickerhub started (feed=%s, %d symbols)", settings.feed_source, len(settings.tracked_symbols))
        try:
            yield
        finally:
            startup.cancel()
            try:
                await startup
            except asyncio.CancelledError:
                pass
            await coordinator.stop()
            await heartbeat.stop()
            await dispatcher.stop()
            await feed.close()
            logger.info("tickerhub stopped")

    app = FastAPI(title="tickerhub", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.coordinator = coordinator
    app.state.store = store
    app.state.feed = feed

    register_exception_handlers(app)
    app.include_router(create_ws_router(gateway))
    app.include_router(create_sync_router(coordinator, feed, registry, verifier))

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
