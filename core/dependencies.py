from fastapi import Request

from core.config import Settings
from ledger.repository import LedgerRepository
from prices.service import MarketDataService, PriceService
from trading.simulator import TransactionSimulator


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_ledger(request: Request) -> LedgerRepository:
    return request.app.state.ledger


def get_price_service(request: Request) -> PriceService:
    return request.app.state.prices


def get_market_data(request: Request) -> MarketDataService:
    return request.app.state.market


def get_simulator(request: Request) -> TransactionSimulator:
    return request.app.state.simulator
