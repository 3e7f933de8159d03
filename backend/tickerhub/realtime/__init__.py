"""Client-facing realtime layer over WebSocket.

Public API:
    ConnectionRegistry  - Live connections and the subscription index
    SubscriptionEngine  - Inbound message handling
    BroadcastDispatcher - Fan-out with per-connection failure isolation
    HeartbeatMonitor    - Liveness probing and eviction
    TokenVerifier       - JWT verification for the handshake
    create_ws_router    - FastAPI router factory for the /ws endpoint
"""

from .auth import TokenVerifier
from .dispatcher import BroadcastDispatcher
from .engine import SubscriptionEngine
from .gateway import RealtimeGateway, create_ws_router
from .heartbeat import HeartbeatMonitor
from .registry import ConnectionRegistry

__all__ = [
    "ConnectionRegistry",
    "SubscriptionEngine",
    "BroadcastDispatcher",
    "HeartbeatMonitor",
    "TokenVerifier",
    "RealtimeGateway",
    "create_ws_router",
]
