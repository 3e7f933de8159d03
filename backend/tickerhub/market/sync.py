"""Sync coordinator: keeps stored markets in step with the upstream feed."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Iterable
from typing import Any, Protocol

from ..errors import StorageUnavailable, UpstreamRateLimited
from .interface import FeedClient, StreamHandle
from .models import MarketSnapshot, normalize_symbol
from .store import MarketStore

logger = logging.getLogger(__name__)

YIELD_EVERY = 100


class Broadcaster(Protocol):
    async def broadcast_to_subscribers(self, symbol: str, channel: str, payload: Any) -> int: ...

    async def broadcast_to_all(self, kind: str, data: Any = None) -> int: ...


class SyncState(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class SyncCoordinator:
    """Owns the feed lifecycle and the tracked symbol set.

    start(): full resync → periodic resync every ``resync_interval`` → stream.
    Every streamed tick is upserted into the store and then handed to the
    broadcaster. The store is written only from here.

    Lifecycle:
        coordinator = SyncCoordinator(feed, store, dispatcher, ["BTCUSDT"])
        await coordinator.start()          # raises if the first resync fails
        await coordinator.add_symbol("ADAUSDT")
        await coordinator.stop()
    """

    def __init__(
        self,
        feed: FeedClient,
        store: MarketStore,
        broadcaster: Broadcaster,
        symbols: Iterable[str] = (),
        resync_interval: float = 300.0,
        restart_delay: float = 1.0,
    ) -> None:
        self._feed = feed
        self._store = store
        self._broadcaster = broadcaster
        self._symbols: list[str] = list(dict.fromkeys(normalize_symbol(s) for s in symbols))
        self._resync_interval = resync_interval
        self._restart_delay = restart_delay

        self._state = SyncState.STOPPED
        self._resync_task: asyncio.Task | None = None
        self._restart_task: asyncio.Task | None = None
        self._stream: StreamHandle | None = None

        self._tick_count = 0
        self._last_resync: float | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SyncState.RUNNING

    def get_symbols(self) -> list[str]:
        return list(self._symbols)

    # --- Lifecycle ---

    async def start(self) -> None:
        """Initial resync, periodic schedule, then the stream.

        A failed initial resync leaves the coordinator STOPPED and re-raises.
        """
        if self._state in (SyncState.RUNNING, SyncState.STARTING):
            logger.info("Sync coordinator already %s", self._state.value)
            return
        if self._state is SyncState.STOPPING:
            raise RuntimeError("cannot start while stopping")

        self._state = SyncState.STARTING
        logger.info("Starting sync coordinator for %d symbols", len(self._symbols))
        try:
            await self.resync("initial_sync")
        except BaseException:
            if self._state is SyncState.STARTING:
                self._state = SyncState.STOPPED
            raise
        if self._state is not SyncState.STARTING:
            logger.info("Sync coordinator stopped during start-up")
            return

        self._resync_task = asyncio.create_task(self._resync_loop(), name="periodic-resync")
        self._stream = await self._feed.open_stream(self._symbols, self._on_tick)
        self._state = SyncState.RUNNING
        logger.info("Sync coordinator running (resync every %.0fs)", self._resync_interval)

    async def stop(self) -> None:
        """Cancel the schedule and close the stream. Idempotent.

        The stream supervisor is awaited, so no tick is applied after this returns.
        """
        if self._state in (SyncState.STOPPED, SyncState.STOPPING):
            return
        self._state = SyncState.STOPPING
        for task in (self._restart_task, self._resync_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._restart_task = None
        self._resync_task = None
        # A restart cancelled mid-flight may have left the feed on a newer handle
        for handle in {self._stream, self._feed.stream} - {None}:
            await handle.close()
        self._stream = None
        self._state = SyncState.STOPPED
        logger.info("Sync coordinator stopped")

    # --- Tracked symbols ---

    async def add_symbol(self, symbol: str) -> bool:
        """Track ``symbol``. No-op (False) if already tracked."""
        symbol = normalize_symbol(symbol)
        if symbol in self._symbols:
            return False
        self._symbols.append(symbol)
        logger.info("Tracking %s", symbol)
        self._schedule_restart()
        return True

    async def remove_symbol(self, symbol: str) -> bool:
        """Stop tracking ``symbol``. No-op (False) if not tracked."""
        symbol = normalize_symbol(symbol)
        if symbol not in self._symbols:
            return False
        self._symbols.remove(symbol)
        logger.info("No longer tracking %s", symbol)
        self._schedule_restart()
        return True

    # --- Resync ---

    async def resync(self, reason: str = "periodic_sync") -> list[MarketSnapshot]:
        """Fetch the tracked set from upstream, store it, announce it."""
        snapshots = await self._feed.fetch_snapshot_batch(list(self._symbols))
        stored = []
        for i, snapshot in enumerate(snapshots, start=1):
            stored.append(await self._store.upsert(snapshot))
            if i % YIELD_EVERY == 0:
                await asyncio.sleep(0)
        self._last_resync = time.time()
        logger.info("%s complete: %d markets", reason, len(stored))
        await self._broadcaster.broadcast_to_all("markets_updated", {"type": reason, "count": len(stored)})
        return stored

    async def manual_sync(self) -> list[MarketSnapshot]:
        """Out-of-schedule resync. Errors propagate to the caller."""
        return await self.resync("manual_sync")

    def get_status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "isRunning": self.is_running,
            "hasPeriodicSync": self._resync_task is not None and not self._resync_task.done(),
            "hasRealtimeUpdates": self._stream is not None and not self._stream.closed,
            "trackedSymbols": self.get_symbols(),
            "streamReconnects": self._stream.reconnects if self._stream else 0,
            "ticksProcessed": self._tick_count,
            "lastResync": self._last_resync,
        }

    # --- Internal ---

    async def _resync_loop(self) -> None:
        """First resync already happened in start()."""
        while True:
            await asyncio.sleep(self._resync_interval)
            try:
                await self.resync("periodic_sync")
            except UpstreamRateLimited as e:
                logger.warning("Periodic resync skipped, rate limited: %s", e)
            except Exception as e:
                logger.error("Periodic resync failed: %s", e)

    async def _on_tick(self, snapshot: MarketSnapshot) -> None:
        if self._state is not SyncState.RUNNING:
            return
        try:
            stored = await self._store.upsert(snapshot)
        except StorageUnavailable as e:
            logger.warning("Dropping tick for %s: %s", snapshot.symbol, e)
            return
        self._tick_count += 1
        await self._broadcaster.broadcast_to_subscribers(stored.symbol, "ticker", stored.to_dict())

    def _schedule_restart(self) -> None:
        """Debounced stream restart: rapid calls collapse into one reopen."""
        if self._state is not SyncState.RUNNING:
            return
        if self._restart_task is not None and not self._restart_task.done():
            self._restart_task.cancel()
        self._restart_task = asyncio.create_task(self._restart_stream(), name="stream-restart")

    async def _restart_stream(self) -> None:
        await asyncio.sleep(self._restart_delay)
        logger.info("Restarting upstream stream for %d symbols", len(self._symbols))
        # open_stream closes the previous handle first
        self._stream = await self._feed.open_stream(self._symbols, self._on_tick)
