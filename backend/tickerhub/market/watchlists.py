"""Watchlist lookup used for best-effort initial subscriptions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping


class WatchlistProvider(ABC):
    @abstractmethod
    async def find_symbols_for_user(self, user_id: str) -> set[str]:
        """Union of the symbols in every watchlist the user owns."""


class InMemoryWatchlistProvider(WatchlistProvider):
    """Watchlists held in a dict of ``user_id -> {watchlist name -> symbols}``."""

    def __init__(self, watchlists: Mapping[str, Mapping[str, Iterable[str]]] | None = None) -> None:
        self._watchlists: dict[str, dict[str, set[str]]] = {}
        for user_id, lists in (watchlists or {}).items():
            for name, symbols in lists.items():
                self.set_watchlist(user_id, name, symbols)

    def set_watchlist(self, user_id: str, name: str, symbols: Iterable[str]) -> None:
        self._watchlists.setdefault(user_id, {})[name] = {s.strip().upper() for s in symbols if s.strip()}

    async def find_symbols_for_user(self, user_id: str) -> set[str]:
        result: set[str] = set()
        for symbols in self._watchlists.get(user_id, {}).values():
            result |= symbols
        return result
