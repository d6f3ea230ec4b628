import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from core.exceptions import UpstreamRateLimited
from prices.coingecko import CoinGeckoClient
from prices.rate_gate import RateLimitGate

logger = logging.getLogger(__name__)


FetchListener = Callable[[str, dict], Awaitable[None]]


@dataclass
class CachedQuote:
    fields: dict
    fetched_at: float


class PriceCache:
    """Per-symbol quote cache in front of the price feed.

    Answers order: fresh cache entry, live fetch, stale entry while the feed
    is rate limiting. Anything else the feed raises reaches the caller.
    """

    def __init__(
        self,
        client: CoinGeckoClient,
        gate: RateLimitGate,
        ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.gate = gate
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CachedQuote] = {}
        self._listeners: list[FetchListener] = []

    def on_fetch(self, listener: FetchListener):
        """Call ``listener(symbol, fields)`` after every successful feed fetch."""
        self._listeners.append(listener)

    def peek(self, symbol: str) -> CachedQuote | None:
        return self._entries.get(symbol.upper())

    def is_fresh(self, entry: CachedQuote | None) -> bool:
        return entry is not None and self._clock() - entry.fetched_at < self.ttl

    def store(self, symbol: str, fields: dict) -> dict:
        self._entries[symbol.upper()] = CachedQuote(fields=dict(fields), fetched_at=self._clock())
        return dict(fields)

    def clear(self):
        self._entries.clear()

    async def refresh(self, symbol: str) -> dict:
        fields = await self.client.fetch_simple_price(symbol)
        stored = self.store(symbol, fields)
        for listener in self._listeners:
            await listener(symbol.upper(), dict(stored))
        return stored

    def _defer(self, symbol: str):
        key = symbol.upper()
        self.gate.enqueue(f"price:{key}", lambda: self.refresh(key))

    async def get_token_price(self, symbol: str) -> dict:
        """Quote fields for ``symbol``: price, price_change_24h, volume_24h, market_cap."""
        entry = self.peek(symbol)
        if self.is_fresh(entry):
            return dict(entry.fields)

        if self.gate.is_open():
            self._defer(symbol)
            if entry:
                logger.debug("Gate open, serving stale %s quote", symbol)
                return dict(entry.fields)
            raise UpstreamRateLimited(retry_after=self.gate.seconds_until_reset())

        try:
            return await self.refresh(symbol)
        except UpstreamRateLimited as e:
            self.gate.trip(e.retry_after)
            self._defer(symbol)
            if entry:
                logger.warning("Rate limited fetching %s, serving cached quote", symbol)
                return dict(entry.fields)
            raise
