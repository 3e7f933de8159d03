"""Liveness monitor: probe every connection, evict the ones that stay silent."""

from __future__ import annotations

import asyncio
import logging

from .dispatcher import BroadcastDispatcher
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)

GOING_AWAY_CLOSE_CODE = 1001
YIELD_EVERY = 100


class HeartbeatMonitor:
    """Every ``interval`` seconds: evict connections that did not answer the last
    probe, and probe the rest.

    Probes are queued through the dispatcher and sockets are closed in the
    background, so a sweep never waits on a stuck client.

    A connection answers by sending ``ping`` or ``pong``; the SubscriptionEngine
    records that through ``ConnectionRegistry.record_liveness``. A connection
    that misses two consecutive sweeps is gone.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        dispatcher: BroadcastDispatcher,
        interval: float = 30.0,
    ) -> None:
        self._registry = registry
        self._dispatcher = dispatcher
        self._interval = interval
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run_loop(), name="heartbeat")
        logger.info("Heartbeat monitor started (%.0fs interval)", self._interval)

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def sweep_once(self) -> tuple[int, int]:
        """One pass over the registry. Returns (probed, evicted)."""
        probed = evicted = 0
        for i, connection in enumerate(self._registry.connections(), start=1):
            if i % YIELD_EVERY == 0:
                await asyncio.sleep(0)
            if connection.connection_id not in self._registry:
                continue  # closed while we were yielding

            if not connection.is_alive:
                if self._dispatcher.disconnect(connection, code=GOING_AWAY_CLOSE_CODE):
                    logger.info("Inactive client evicted: %s", connection.connection_id)
                    evicted += 1
                continue

            self._registry.mark_probed(connection.connection_id)
            if await self._dispatcher.send(connection, "heartbeat"):
                probed += 1

        if evicted:
            logger.info("Heartbeat: %d probed, %d evicted", probed, evicted)
        return probed, evicted

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Heartbeat sweep failed")
