import logging
from dataclasses import replace
from typing import Optional

from core.exceptions import UpstreamError, UpstreamRateLimited
from ledger.domain import PriceQuote, Token
from ledger.repository import LedgerRepository
from prices.cache import PriceCache
from prices.coingecko import CoinGeckoClient, coin_id_for
from prices.rate_gate import RateLimitGate

logger = logging.getLogger(__name__)


class PriceService:
    """Live quote when the feed answers, last stored quote when it does not."""

    def __init__(self, cache: PriceCache, ledger: LedgerRepository):
        self.cache = cache
        self.ledger = ledger
        cache.on_fetch(self.record_fetch)

    async def record_fetch(self, symbol: str, fields: dict):
        # only real fetches move the stored quote and its updated_at
        token = await self.ledger.get_token_by_symbol(symbol)
        if token:
            await self.ledger.upsert_token_price(token.id, **fields)

    async def live_quote(self, token: Token) -> PriceQuote:
        fields = await self.cache.get_token_price(token.symbol)
        stored = await self.ledger.get_token_price(token.id)
        if stored is None:
            return PriceQuote(token_id=token.id, **fields)
        return replace(stored, **{name: value for name, value in fields.items() if value is not None})

    async def quote_for(self, token: Token) -> Optional[PriceQuote]:
        try:
            return await self.live_quote(token)
        except UpstreamError as e:
            logger.warning("Live price for %s unavailable (%s), using stored quote", token.symbol, e)
            return await self.ledger.get_token_price(token.id)


class MarketDataService:
    """Straight passthroughs to the feed, sharing the price cache's gate."""

    def __init__(self, client: CoinGeckoClient, gate: RateLimitGate):
        self.client = client
        self.gate = gate

    async def _guarded(self, fetch, *args):
        if self.gate.is_open():
            raise UpstreamRateLimited(retry_after=self.gate.seconds_until_reset())
        try:
            return await fetch(*args)
        except UpstreamRateLimited as e:
            self.gate.trip(e.retry_after)
            raise

    async def trending(self) -> list[dict]:
        return await self._guarded(self.client.fetch_trending)

    async def global_market(self) -> dict:
        return await self._guarded(self.client.fetch_global)

    async def coin(self, coin: str) -> dict:
        return await self._guarded(self.client.fetch_coin, coin_id_for(coin))

    async def chart(self, coin: str, days: str = "7") -> dict:
        return await self._guarded(self.client.fetch_market_chart, coin_id_for(coin), days)
