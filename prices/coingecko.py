"""CoinGecko v3 client.

Thin httpx wrapper: every call opens its own ``AsyncClient`` and turns the
feed's failures into ``UpstreamError`` / ``UpstreamRateLimited``.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from email.utils import parsedate_to_datetime

import httpx

from core.exceptions import UpstreamError, UpstreamRateLimited

logger = logging.getLogger(__name__)

# Token symbol -> CoinGecko coin id
COINGECKO_ID_MAP = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "ADA": "cardano",
    "BNB": "binancecoin",
    "XRP": "ripple",
    "DOT": "polkadot",
    "DOGE": "dogecoin",
    "AVAX": "avalanche-2",
    "LINK": "chainlink",
    "USDT": "tether",
    "USDC": "usd-coin",
    "MATIC": "matic-network",
    "UNI": "uniswap",
    "SHIB": "shiba-inu",
    "LTC": "litecoin",
    "ATOM": "cosmos",
    "XLM": "stellar",
    "NEAR": "near",
    "ALGO": "algorand",
}


def coin_id_for(symbol: str) -> str:
    return COINGECKO_ID_MAP.get(symbol.upper(), symbol.lower())


def parse_retry_after(value: str | None) -> float | None:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def _decimal(value) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


class CoinGeckoClient:
    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = str(base_url).rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict:
        headers = {
            "Accept": "application/json",
            "User-Agent": "SwapDesk-FastAPI",
        }
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key
        return headers

    async def _get(self, path: str, params: dict | None = None):
        url = f"{self.base_url}{path}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, params=params, headers=self._headers())
        except httpx.RequestError as e:
            raise UpstreamError(f"Price feed network error: {str(e)[:200]}") from e

        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            logger.warning("Price feed rate limited on %s (retry after %s)", path, retry_after)
            raise UpstreamRateLimited(retry_after=retry_after)

        if response.status_code != 200:
            raise UpstreamError(f"Price feed error {response.status_code}: {response.text[:200]}")

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("Price feed returned invalid JSON") from e

    async def fetch_simple_price(self, symbol: str) -> dict:
        """Latest USD price, 24h change, volume and market cap for a symbol."""
        coin_id = coin_id_for(symbol)
        data = await self._get(
            "/simple/price",
            params={
                "ids": coin_id,
                "vs_currencies": "usd",
                "include_24h_vol": "true",
                "include_24h_change": "true",
                "include_market_cap": "true",
            },
        )

        row = data.get(coin_id) if isinstance(data, dict) else None
        if not row or row.get("usd") is None:
            raise UpstreamError(f"Price data not found for {symbol}")

        change = row.get("usd_24h_change")
        return {
            "price": _decimal(row["usd"]),
            "price_change_24h": _decimal(round(change, 2)) if change is not None else Decimal("0.00"),
            "volume_24h": _decimal(row.get("usd_24h_vol")),
            "market_cap": _decimal(row.get("usd_market_cap")),
        }

    async def fetch_trending(self) -> list[dict]:
        data = await self._get("/search/trending")
        try:
            return [
                {
                    "id": coin["item"]["id"],
                    "name": coin["item"]["name"],
                    "symbol": coin["item"]["symbol"],
                    "logoUrl": coin["item"].get("large"),
                    "marketCapRank": coin["item"].get("market_cap_rank"),
                }
                for coin in data["coins"]
            ]
        except (KeyError, TypeError) as e:
            raise UpstreamError("Unexpected trending payload") from e

    async def fetch_global(self) -> dict:
        payload = await self._get("/global")
        try:
            data = payload["data"]
            return {
                "totalMarketCap": data["total_market_cap"]["usd"],
                "totalVolume24h": data["total_volume"]["usd"],
                "marketCapPercentage": data["market_cap_percentage"],
                "marketCapChangePercentage24hUsd": data["market_cap_change_percentage_24h_usd"],
            }
        except (KeyError, TypeError) as e:
            raise UpstreamError("Unexpected global market payload") from e

    async def fetch_coin(self, coin_id: str) -> dict:
        data = await self._get(
            f"/coins/{coin_id}",
            params={
                "localization": "false",
                "tickers": "false",
                "market_data": "true",
                "community_data": "false",
                "developer_data": "false",
                "sparkline": "false",
            },
        )
        try:
            market = data["market_data"]
            return {
                "id": data["id"],
                "symbol": data["symbol"],
                "name": data["name"],
                "logoUrl": data["image"]["large"],
                "description": data["description"]["en"],
                "marketCap": market["market_cap"]["usd"],
                "marketCapRank": data.get("market_cap_rank"),
                "fullyDilutedValuation": (market.get("fully_diluted_valuation") or {}).get("usd"),
                "totalVolume": market["total_volume"]["usd"],
                "high24h": market["high_24h"]["usd"],
                "low24h": market["low_24h"]["usd"],
                "priceChange24h": market.get("price_change_24h"),
                "priceChangePercentage24h": market.get("price_change_percentage_24h"),
                "priceChangePercentage7d": market.get("price_change_percentage_7d"),
                "priceChangePercentage30d": market.get("price_change_percentage_30d"),
                "marketCapChange24h": market.get("market_cap_change_24h"),
                "marketCapChangePercentage24h": market.get("market_cap_change_percentage_24h"),
                "circulatingSupply": market.get("circulating_supply"),
                "totalSupply": market.get("total_supply"),
                "maxSupply": market.get("max_supply"),
                "ath": market["ath"]["usd"],
                "athChangePercentage": market["ath_change_percentage"]["usd"],
                "athDate": market["ath_date"]["usd"],
                "atl": market["atl"]["usd"],
                "atlChangePercentage": market["atl_change_percentage"]["usd"],
                "atlDate": market["atl_date"]["usd"],
                "lastUpdated": data.get("last_updated"),
            }
        except (KeyError, TypeError) as e:
            raise UpstreamError(f"Unexpected coin payload for {coin_id}") from e

    async def fetch_market_chart(self, coin_id: str, days: str = "7") -> dict:
        data = await self._get(
            f"/coins/{coin_id}/market_chart",
            params={"vs_currency": "usd", "days": days},
        )
        try:
            return {
                "prices": data["prices"],
                "marketCaps": data["market_caps"],
                "totalVolumes": data["total_volumes"],
            }
        except (KeyError, TypeError) as e:
            raise UpstreamError(f"Unexpected chart payload for {coin_id}") from e
