"""Error taxonomy for the real-time market data layer."""

from __future__ import annotations


class TickerHubError(Exception):
    """Base class for every error raised by this package."""


class UpstreamError(TickerHubError):
    """The exchange answered with something we cannot use."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class UpstreamUnavailable(UpstreamError):
    """Network failure or 5xx from the exchange."""


class UpstreamRateLimited(UpstreamError):
    """HTTP 429 (or 418 ban) from the exchange. The caller must back off."""

    def __init__(self, message: str, status: int | None = 429, retry_after: float | None = None) -> None:
        super().__init__(message, status=status)
        self.retry_after = retry_after


class InvalidToken(TickerHubError):
    """Bearer token failed signature, expiry, issuer or audience checks."""


class MalformedMessage(TickerHubError):
    """An inbound client frame could not be parsed into a known message."""


class DeliveryFailure(TickerHubError):
    """Sending to one specific connection failed."""

    def __init__(self, connection_id: str, reason: str) -> None:
        super().__init__(f"delivery to {connection_id} failed: {reason}")
        self.connection_id = connection_id
        self.reason = reason


class StorageUnavailable(TickerHubError):
    """A market storage call failed."""
