"""Connection registry and the inverted subscription index."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

Subscription = tuple[str, str]  # (symbol, channel)


class Transport(Protocol):
    """What the registry needs from a socket. FastAPI's WebSocket satisfies it."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


@dataclass(eq=False)
class ClientConnection:
    """One live, authenticated client socket.

    ``subscriptions`` is read-only; only ConnectionRegistry changes it so the
    index and the per-connection sets never diverge.
    """

    connection_id: str
    user_id: str
    transport: Transport
    connected_at: float = field(default_factory=time.time)
    last_liveness_response: float = field(default_factory=time.time)
    is_alive: bool = True
    _subscriptions: set[Subscription] = field(default_factory=set, repr=False)

    @property
    def subscriptions(self) -> frozenset[Subscription]:
        return frozenset(self._subscriptions)


class ConnectionRegistry:
    """Owns every ClientConnection and the (symbol, channel) → connection_ids index.

    Every method is synchronous. On a single event loop that makes each
    mutation atomic with respect to other tasks, which is what keeps the
    index equal to the union of the connections' subscription sets.
    """

    def __init__(self) -> None:
        self._connections: dict[str, ClientConnection] = {}
        self._index: dict[Subscription, set[str]] = {}

    # --- Lifecycle ---

    def register(self, user_id: str, transport: Transport) -> ClientConnection:
        connection = ClientConnection(
            connection_id=f"client_{uuid.uuid4().hex}",
            user_id=user_id,
            transport=transport,
        )
        self._connections[connection.connection_id] = connection
        logger.info(
            "Client connected: %s (user %s, total %d)",
            connection.connection_id,
            user_id,
            len(self._connections),
        )
        return connection

    def remove(self, connection_id: str) -> ClientConnection | None:
        """Drop a connection and all of its index entries in one step."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None
        for key in connection._subscriptions:
            self._discard_from_index(key, connection_id)
        connection._subscriptions.clear()
        logger.info("Client removed: %s (total %d)", connection_id, len(self._connections))
        return connection

    def get(self, connection_id: str) -> ClientConnection | None:
        return self._connections.get(connection_id)

    def connections(self) -> list[ClientConnection]:
        """Snapshot list, safe to iterate while connections come and go."""
        return list(self._connections.values())

    # --- Subscriptions ---

    def subscribe(self, connection_id: str, pairs: Iterable[Subscription]) -> set[Subscription]:
        """Add pairs; returns the ones that were not already present."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return set()
        added = set()
        for key in pairs:
            if key in connection._subscriptions:
                continue
            connection._subscriptions.add(key)
            self._index.setdefault(key, set()).add(connection_id)
            added.add(key)
        return added

    def unsubscribe(self, connection_id: str, pairs: Iterable[Subscription]) -> set[Subscription]:
        """Remove pairs; returns the ones that were actually present."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return set()
        removed = set()
        for key in pairs:
            if key not in connection._subscriptions:
                continue
            connection._subscriptions.discard(key)
            self._discard_from_index(key, connection_id)
            removed.add(key)
        return removed

    def unsubscribe_all(self, connection_id: str) -> set[Subscription]:
        connection = self._connections.get(connection_id)
        if connection is None:
            return set()
        return self.unsubscribe(connection_id, list(connection._subscriptions))

    def subscribers(self, symbol: str, channel: str) -> set[str]:
        """The single place that answers "who wants symbol X on channel Y"."""
        return set(self._index.get((symbol, channel), ()))

    def subscribed_symbols(self, channel: str = "ticker") -> set[str]:
        return {symbol for symbol, ch in self._index if ch == channel}

    # --- Liveness ---

    def record_liveness(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.is_alive = True
            connection.last_liveness_response = time.time()

    def mark_probed(self, connection_id: str) -> bool:
        """Clear ``is_alive`` before sending a probe. Returns the previous value."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        was_alive = connection.is_alive
        connection.is_alive = False
        return was_alive

    # --- Introspection ---

    def index_snapshot(self) -> dict[Subscription, frozenset[str]]:
        return {key: frozenset(ids) for key, ids in self._index.items()}

    def stats(self) -> dict[str, Any]:
        return {
            "connectedClients": len(self._connections),
            "totalSubscriptions": sum(len(c._subscriptions) for c in self._connections.values()),
            "subscribedSymbols": sorted(self.subscribed_symbols()),
        }

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def _discard_from_index(self, key: Subscription, connection_id: str) -> None:
        ids = self._index.get(key)
        if ids is None:
            return
        ids.discard(connection_id)
        if not ids:
            del self._index[key]
