"""WebSocket endpoint: authenticated handshake and the per-connection receive loop."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from ..errors import InvalidToken
from .auth import TokenVerifier
from .dispatcher import BroadcastDispatcher
from .engine import SubscriptionEngine
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)

POLICY_VIOLATION = 1008


class RealtimeGateway:
    """Binds one accepted socket to the registry for its whole lifetime."""

    def __init__(
        self,
        verifier: TokenVerifier,
        registry: ConnectionRegistry,
        engine: SubscriptionEngine,
        dispatcher: BroadcastDispatcher,
    ) -> None:
        self._verifier = verifier
        self._registry = registry
        self._engine = engine
        self._dispatcher = dispatcher

    async def serve(self, websocket: WebSocket, token: str | None) -> None:
        # Verify before accept(): a rejected handshake never creates a connection.
        try:
            claims = self._verifier.verify(token)
        except InvalidToken as e:
            client = websocket.client.host if websocket.client else "unknown"
            logger.warning("WebSocket handshake from %s rejected: %s", client, e)
            await websocket.close(code=POLICY_VIOLATION)
            return

        await websocket.accept()
        connection = self._registry.register(claims.user_id, websocket)
        cid = connection.connection_id
        try:
            await self._dispatcher.send(
                connection,
                "connection",
                {"status": "connected", "connectionId": cid, "userId": claims.user_id},
            )
            await self._engine.subscribe_watchlist(connection)

            while cid in self._registry:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                await self._engine.handle(connection, raw)
        except WebSocketDisconnect:
            pass
        finally:
            if self._registry.remove(cid) is not None:
                logger.info("Client disconnected: %s", cid)


def create_ws_router(gateway: RealtimeGateway) -> APIRouter:
    """Create the WebSocket router bound to ``gateway``.

    Browsers cannot set headers on a WebSocket handshake, so the bearer token
    travels in the ``token`` query parameter: ``/ws?token=<jwt>``.
    """
    router = APIRouter(tags=["realtime"])

    @router.websocket("/ws")
    async def market_socket(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
        await gateway.serve(websocket, token)

    return router
