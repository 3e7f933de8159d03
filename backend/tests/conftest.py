"""Pytest configuration and fixtures."""

import asyncio
import json
import time

import jwt
import pytest

JWT_SECRET = "test-secret"
JWT_ISSUER = "laevitas-trading"
JWT_AUDIENCE = "laevitas-users"


@pytest.fixture
def event_loop_policy():
    """Use the default event loop policy for all async tests."""
    return asyncio.DefaultEventLoopPolicy()


class FakeTransport:
    """In-process stand-in for a WebSocket: records frames and close calls."""

    def __init__(self, fail_with: Exception | None = None, delay: float = 0.0):
        self.sent: list[str] = []
        self.closed_with: list[int] = []
        self.fail_with = fail_with
        self.delay = delay

    async def send_text(self, data: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed_with.append(code)

    def frames(self, kind: str | None = None) -> list[dict]:
        decoded = [json.loads(raw) for raw in self.sent]
        return [f for f in decoded if kind is None or f["type"] == kind]


@pytest.fixture
def transport_factory():
    """Build FakeTransport instances: ``transport_factory(fail_with=OSError())``."""
    return FakeTransport


@pytest.fixture
def make_token():
    """Sign a test JWT. Keyword overrides replace or (with None) drop claims."""

    def _make(secret: str = JWT_SECRET, **overrides) -> str:
        claims = {
            "userId": "user-1",
            "iss": JWT_ISSUER,
            "aud": JWT_AUDIENCE,
            "exp": int(time.time()) + 3600,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, secret, algorithm="HS256")

    return _make


@pytest.fixture
def verifier():
    from tickerhub.realtime.auth import TokenVerifier

    return TokenVerifier(JWT_SECRET, JWT_ISSUER, JWT_AUDIENCE)
