"""
Pytest configuration and shared fixtures
"""
import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from core.config import Settings
from ledger.memory import InMemoryLedgerRepository
from ledger.sql import SqlLedgerRepository
from main import create_app
from prices.coingecko import COINGECKO_ID_MAP


class FakeClock:
    """Monotonic clock the tests move by hand; ``sleep`` advances it."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeFeed:
    """Scripted CoinGecko stand-in for ``httpx.MockTransport``."""

    def __init__(self):
        self.prices = {
            "ETH": 3000.0,
            "BTC": 45000.0,
            "USDT": 1.0,
            "SOL": 100.0,
            "ADA": 0.5,
        }
        self.rate_limited = False
        self.retry_after = "30"
        self.fail_with: int | None = None
        self.requests: list[httpx.Request] = []

    @property
    def price_calls(self) -> int:
        return sum(1 for r in self.requests if r.url.path.endswith("/simple/price"))

    def _json(self, payload, status_code: int = 200) -> httpx.Response:
        return httpx.Response(status_code, content=json.dumps(payload), headers={"Content-Type": "application/json"})

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.rate_limited:
            return httpx.Response(429, headers={"Retry-After": self.retry_after}, text="Too Many Requests")
        if self.fail_with:
            return httpx.Response(self.fail_with, text="upstream exploded")

        path = request.url.path
        if path.endswith("/simple/price"):
            coin_id = request.url.params["ids"]
            by_id = {COINGECKO_ID_MAP[s]: p for s, p in self.prices.items()}
            if coin_id not in by_id:
                return self._json({})
            return self._json({
                coin_id: {
                    "usd": by_id[coin_id],
                    "usd_24h_change": 1.2345,
                    "usd_24h_vol": 1000000.0,
                    "usd_market_cap": 50000000.0,
                }
            })
        if path.endswith("/search/trending"):
            return self._json({
                "coins": [
                    {"item": {"id": "pepe", "name": "Pepe", "symbol": "PEPE", "large": "https://img/pepe.png", "market_cap_rank": 40}},
                    {"item": {"id": "bitcoin", "name": "Bitcoin", "symbol": "BTC", "large": "https://img/btc.png", "market_cap_rank": 1}},
                ]
            })
        if path.endswith("/global"):
            return self._json({
                "data": {
                    "total_market_cap": {"usd": 2.5e12},
                    "total_volume": {"usd": 9.1e10},
                    "market_cap_percentage": {"btc": 51.2, "eth": 16.8},
                    "market_cap_change_percentage_24h_usd": -0.42,
                }
            })
        if path.endswith("/market_chart"):
            return self._json({
                "prices": [[1700000000000, 3000.5], [1700003600000, 3010.25]],
                "market_caps": [[1700000000000, 3.6e11]],
                "total_volumes": [[1700000000000, 1.2e10]],
            })
        return httpx.Response(404, text="not found")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1000.0)


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()


@pytest.fixture
def feed_transport(feed) -> httpx.MockTransport:
    return httpx.MockTransport(feed.handle)


@pytest.fixture(params=["memory", "sql"])
def ledger(request):
    """Both ledger backends behind the same repository interface."""
    if request.param == "memory":
        yield InMemoryLedgerRepository()
    else:
        repo = SqlLedgerRepository("sqlite://")
        yield repo
        repo.dispose()


@pytest.fixture
def memory_ledger() -> InMemoryLedgerRepository:
    return InMemoryLedgerRepository()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        LOG_LEVEL="WARNING",
        API_RATE_LIMIT_ENABLED=False,
        SETTLEMENT_DELAY_SECONDS=0.05,
        DEMO_SEED=7,
    )


@pytest.fixture
def client(test_settings, feed_transport):
    app = create_app(test_settings, feed_transport=feed_transport)
    with TestClient(app) as c:
        yield c
