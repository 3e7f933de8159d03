"""Broadcast dispatcher: fan updates out to exactly the subscribed connections."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..errors import DeliveryFailure, StorageUnavailable
from ..market.store import MarketStore
from .messages import envelope
from .registry import ClientConnection, ConnectionRegistry

logger = logging.getLogger(__name__)

# 1011: server hit an unexpected condition (for this connection)
EVICT_CLOSE_CODE = 1011


class BroadcastDispatcher:
    """Delivers frames to connections with per-connection failure isolation.

    Every connection has its own bounded outbox drained by a writer task, so
    queuing a frame never waits on a client socket. A connection whose outbox
    overflows, or whose send raises, times out or cannot be serialized, is
    evicted from the registry without affecting anyone else. Nothing here
    raises to the caller, and the SyncCoordinator's tick path is never held up
    by a client.

    Also runs the snapshot sweep: every ``sweep_interval`` seconds, re-push
    the stored snapshot of each symbol that has a ticker subscriber.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: MarketStore,
        send_timeout: float = 5.0,
        sweep_interval: float = 1.0,
        max_pending: int = 256,
    ) -> None:
        self._registry = registry
        self._store = store
        self._send_timeout = send_timeout
        self._sweep_interval = sweep_interval
        self._max_pending = max_pending
        self._task: asyncio.Task | None = None

        self._outboxes: dict[str, asyncio.Queue[str]] = {}
        self._writers: dict[str, asyncio.Task] = {}
        self._closing: set[asyncio.Task] = set()

    # --- Delivery ---

    async def send(self, connection: ClientConnection, kind: str, data: Any = None) -> bool:
        """Queue one frame for one connection. Returns False if it was not accepted."""
        return await self._fan_out([connection], kind, data) == 1

    async def broadcast_to_subscribers(self, symbol: str, channel: str, payload: Any) -> int:
        """Queue ``payload`` for every connection subscribed to (symbol, channel).

        Returns how many connections it was queued for.
        """
        ids = self._registry.subscribers(symbol, channel)
        if not ids:
            return 0
        targets = [c for c in map(self._registry.get, ids) if c is not None]
        return await self._fan_out(targets, channel, payload)

    async def broadcast_to_all(self, kind: str, data: Any = None) -> int:
        """Registry-wide announcement, bypassing the subscription filter."""
        return await self._fan_out(self._registry.connections(), kind, data)

    def disconnect(self, connection: ClientConnection, code: int = EVICT_CLOSE_CODE) -> bool:
        """Remove ``connection`` and close its socket in the background.

        Returns False if it was already gone.
        """
        if self._registry.remove(connection.connection_id) is None:
            return False
        task = asyncio.create_task(self._close(connection, code), name=f"close-{connection.connection_id}")
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        return True

    async def flush(self) -> None:
        """Wait until every queued frame has been written or dropped."""
        while self._writers or self._closing:
            await asyncio.gather(*self._writers.values(), *self._closing, return_exceptions=True)

    def pending(self, connection_id: str) -> int:
        outbox = self._outboxes.get(connection_id)
        return outbox.qsize() if outbox is not None else 0

    # --- Snapshot sweep ---

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._sweep_loop(), name="snapshot-sweep")
        logger.info("Snapshot sweep started (%.1fs interval)", self._sweep_interval)

    async def stop(self) -> None:
        """Stop the sweep and abandon any frames still queued."""
        tasks = [*self._writers.values(), *self._closing]
        if self._task and not self._task.done():
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._writers.clear()
        self._outboxes.clear()

    async def sweep_once(self) -> int:
        """Re-push current snapshots for every symbol with a live ticker subscriber."""
        symbols = self._registry.subscribed_symbols("ticker")
        if not symbols:
            return 0
        try:
            markets = await self._store.find_by_symbols(sorted(symbols))
        except StorageUnavailable as e:
            logger.warning("Snapshot sweep skipped: %s", e)
            return 0

        pushed = 0
        for market in markets:
            if market.snapshot is None:
                continue
            await self.broadcast_to_subscribers(market.symbol, "ticker", market.snapshot.to_dict())
            pushed += 1
        return pushed

    # --- Internal ---

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Snapshot sweep failed")

    async def _fan_out(self, targets: list[ClientConnection], kind: str, data: Any) -> int:
        if not targets:
            return 0
        try:
            frame = envelope(kind, data)
        except (TypeError, ValueError) as e:
            # Counts as a delivery failure for every intended recipient
            reason = f"cannot serialize {kind} frame: {e}"
            for connection in targets:
                self._evict(connection, DeliveryFailure(connection.connection_id, reason))
            return 0
        return sum(self._enqueue(c, frame) for c in targets)

    def _enqueue(self, connection: ClientConnection, frame: str) -> bool:
        cid = connection.connection_id
        if cid not in self._registry:
            return False
        outbox = self._outboxes.get(cid)
        if outbox is None:
            outbox = self._outboxes[cid] = asyncio.Queue(maxsize=self._max_pending)
        try:
            outbox.put_nowait(frame)
        except asyncio.QueueFull:
            self._evict(connection, DeliveryFailure(cid, f"{self._max_pending} frames pending"))
            return False
        if cid not in self._writers:
            self._writers[cid] = asyncio.create_task(self._write_loop(connection, outbox), name=f"writer-{cid}")
        return True

    async def _write_loop(self, connection: ClientConnection, outbox: asyncio.Queue[str]) -> None:
        """Drain one connection's outbox in order, then exit."""
        cid = connection.connection_id
        try:
            while not outbox.empty():
                frame = outbox.get_nowait()
                if cid not in self._registry:
                    return
                try:
                    await asyncio.wait_for(connection.transport.send_text(frame), self._send_timeout)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._evict(connection, DeliveryFailure(cid, str(e) or type(e).__name__))
                    return
        finally:
            self._writers.pop(cid, None)
            self._outboxes.pop(cid, None)

    def _evict(self, connection: ClientConnection, failure: DeliveryFailure) -> None:
        if self.disconnect(connection):
            logger.warning("%s; connection evicted", failure)

    async def _close(self, connection: ClientConnection, code: int) -> None:
        try:
            await asyncio.wait_for(connection.transport.close(code=code), self._send_timeout)
        except Exception as e:
            logger.debug("Closing connection %s failed: %s", connection.connection_id, e)
