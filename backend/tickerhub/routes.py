"""REST surface for sync control and on-demand exchange data."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from .errors import InvalidToken, UpstreamError, UpstreamRateLimited
from .market.interface import FeedClient
from .market.sync import SyncCoordinator
from .realtime.auth import TokenClaims, TokenVerifier, extract_bearer
from .realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def create_sync_router(
    coordinator: SyncCoordinator,
    feed: FeedClient,
    registry: ConnectionRegistry,
    verifier: TokenVerifier,
) -> APIRouter:
    """Create the ``/api/realtime`` router.

    Every route needs a valid bearer token; the ones that change what is
    tracked or synced also need ``role == "admin"``.
    """
    router = APIRouter(prefix="/api/realtime", tags=["realtime"])

    def current_claims(authorization: str | None = Header(default=None)) -> TokenClaims:
        try:
            return verifier.verify(extract_bearer(authorization))
        except InvalidToken as e:
            raise HTTPException(status_code=401, detail=str(e)) from None

    def admin_claims(claims: TokenClaims = Depends(current_claims)) -> TokenClaims:
        if claims.role != "admin":
            raise HTTPException(status_code=403, detail="admin role required")
        return claims

    @router.get("/status")
    async def get_status(_: TokenClaims = Depends(current_claims)) -> dict[str, Any]:
        return {
            "sync": coordinator.get_status(),
            "websocket": registry.stats(),
            "streamedSymbols": feed.get_streamed_symbols(),
        }

    @router.post("/sync")
    async def manual_sync(_: TokenClaims = Depends(admin_claims)) -> dict[str, Any]:
        stored = await coordinator.manual_sync()
        return {"success": True, "count": len(stored)}

    @router.post("/sync/start")
    async def start_sync(_: TokenClaims = Depends(admin_claims)) -> dict[str, Any]:
        await coordinator.start()
        return {"success": True, "status": coordinator.get_status()}

    @router.post("/sync/stop")
    async def stop_sync(_: TokenClaims = Depends(admin_claims)) -> dict[str, Any]:
        await coordinator.stop()
        return {"success": True, "status": coordinator.get_status()}

    @router.post("/tracking/{symbol}")
    async def track_symbol(symbol: str, _: TokenClaims = Depends(admin_claims)) -> dict[str, Any]:
        added = await coordinator.add_symbol(symbol)
        return {"success": True, "added": added, "trackedSymbols": coordinator.get_symbols()}

    @router.delete("/tracking/{symbol}")
    async def untrack_symbol(symbol: str, _: TokenClaims = Depends(admin_claims)) -> dict[str, Any]:
        removed = await coordinator.remove_symbol(symbol)
        return {"success": True, "removed": removed, "trackedSymbols": coordinator.get_symbols()}

    @router.get("/ticker/{symbol}")
    async def get_ticker(symbol: str, _: TokenClaims = Depends(current_claims)) -> dict[str, Any]:
        snapshots = await feed.fetch_snapshot_batch([symbol])
        if not snapshots:
            raise HTTPException(status_code=404, detail=f"unknown symbol: {symbol.upper()}")
        return snapshots[0].to_dict()

    @router.get("/klines/{symbol}")
    async def get_klines(
        symbol: str,
        interval: str = "1h",
        limit: int = 100,
        _: TokenClaims = Depends(current_claims),
    ) -> list[dict[str, Any]]:
        fetch = getattr(feed, "fetch_klines", None)
        if fetch is None:
            raise HTTPException(status_code=501, detail="klines not available from this feed")
        klines = await fetch(symbol, interval=interval, limit=limit)
        return [k.to_dict() for k in klines]

    @router.get("/orderbook/{symbol}")
    async def get_order_book(
        symbol: str,
        limit: int = 100,
        _: TokenClaims = Depends(current_claims),
    ) -> dict[str, Any]:
        fetch = getattr(feed, "fetch_order_book", None)
        if fetch is None:
            raise HTTPException(status_code=501, detail="order book not available from this feed")
        book = await fetch(symbol, limit=limit)
        return book.to_dict()

    return router


def register_exception_handlers(app: FastAPI) -> None:
    """Map upstream failures raised inside routes to HTTP responses."""

    @app.exception_handler(UpstreamRateLimited)
    async def rate_limited(request: Request, exc: UpstreamRateLimited) -> JSONResponse:
        logger.warning("%s %s rate limited upstream: %s", request.method, request.url.path, exc)
        headers = {"Retry-After": str(int(exc.retry_after))} if exc.retry_after else None
        return JSONResponse(status_code=429, content={"detail": str(exc)}, headers=headers)

    @app.exception_handler(UpstreamError)
    async def upstream_failed(request: Request, exc: UpstreamError) -> JSONResponse:
        logger.error("%s %s upstream failure: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=502, content={"detail": str(exc)})
