import logging
import random
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from core.config import Settings, settings as default_settings
from core.handlers import register_exception_handlers
from core.log_config import setup_logging
from core.rate_limit import build_limiter
from ledger.memory import InMemoryLedgerRepository
from ledger.repository import LedgerRepository
from ledger.sql import SqlLedgerRepository
from portfolio.router import router as portfolio_router
from prices.cache import PriceCache
from prices.coingecko import CoinGeckoClient
from prices.rate_gate import RateLimitGate
from prices.router import router as market_router
from prices.service import MarketDataService, PriceService
from trading.router import router as trading_router
from trading.settlement import SettlementScheduler
from trading.simulator import TransactionSimulator
from transactions.main import router as transaction_router

logger = logging.getLogger(__name__)


def build_ledger(settings: Settings, rng: random.Random) -> LedgerRepository:
    if settings.LEDGER_BACKEND == "sql":
        return SqlLedgerRepository(settings.DATABASE_URL, rng=rng)
    return InMemoryLedgerRepository(rng=rng)


def create_app(
    settings: Settings | None = None,
    *,
    ledger: LedgerRepository | None = None,
    feed_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or default_settings
    setup_logging(settings.LOG_LEVEL)

    rng = random.Random(settings.DEMO_SEED)
    ledger = ledger or build_ledger(settings, rng)

    client = CoinGeckoClient(
        base_url=str(settings.PRICE_FEED_BASE_URL),
        api_key=settings.PRICE_FEED_API_KEY,
        timeout=settings.PRICE_FEED_TIMEOUT_SECONDS,
        transport=feed_transport,
    )
    gate = RateLimitGate(
        default_backoff=settings.RATE_LIMIT_BACKOFF_SECONDS,
        batch_size=settings.RATE_LIMIT_DRAIN_BATCH_SIZE,
        spacing=settings.RATE_LIMIT_DRAIN_SPACING_SECONDS,
    )
    cache = PriceCache(client, gate, ttl=settings.PRICE_CACHE_TTL_SECONDS)
    prices = PriceService(cache, ledger)
    settlement = SettlementScheduler()
    simulator = TransactionSimulator(
        ledger,
        prices,
        settlement,
        settlement_delay=settings.SETTLEMENT_DELAY_SECONDS,
        rng=rng,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settlement.start()
        await simulator.resume_pending()
        logger.info("%s %s started (%s ledger)", settings.APP_NAME, settings.APP_VERSION, settings.LEDGER_BACKEND)
        yield
        await simulator.shutdown()
        await gate.close()
        if isinstance(ledger, SqlLedgerRepository):
            ledger.dispose()
        logger.info("%s stopped", settings.APP_NAME)

    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)

    app.state.settings = settings
    app.state.ledger = ledger
    app.state.prices = prices
    app.state.market = MarketDataService(client, gate)
    app.state.simulator = simulator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = build_limiter(settings.API_RATE_LIMIT, enabled=settings.API_RATE_LIMIT_ENABLED)
    app.add_middleware(SlowAPIMiddleware)

    register_exception_handlers(app)

    app.include_router(market_router)
    app.include_router(portfolio_router)
    app.include_router(transaction_router)
    app.include_router(trading_router)

    @app.get("/")
    def health_check():
        return {"status": "healthy", "version": settings.APP_VERSION}

    return app


app = create_app()
