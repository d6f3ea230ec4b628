import logging
from typing import List

from fastapi import APIRouter, Depends, Query

from core.dependencies import get_ledger, get_market_data, get_price_service
from ledger.domain import Token, format_amount
from ledger.repository import LedgerRepository
from prices.schemas import (
    CoinDetailOut,
    GlobalMarketOut,
    MarketChartOut,
    TokenOut,
    TokenPriceOut,
    TrendingCoin,
)
from prices.service import MarketDataService, PriceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Market"])


def _token_out(token: Token) -> TokenOut:
    return TokenOut(
        id=token.id,
        symbol=token.symbol,
        name=token.name,
        logoUrl=token.logo_url,
        decimals=token.decimals,
        contractAddress=token.contract_address,
        network=token.network,
    )


@router.get("/tokens", response_model=List[TokenOut])
async def list_tokens(ledger: LedgerRepository = Depends(get_ledger)):
    return [_token_out(t) for t in await ledger.list_tokens()]


@router.get("/prices", response_model=List[TokenPriceOut])
async def list_prices(
    ledger: LedgerRepository = Depends(get_ledger),
    prices: PriceService = Depends(get_price_service),
):
    result = []
    for token in await ledger.list_tokens():
        quote = await prices.quote_for(token)
        result.append(TokenPriceOut(
            id=token.id,
            symbol=token.symbol,
            name=token.name,
            logoUrl=token.logo_url,
            price=format_amount(quote.price) if quote else "0",
            priceChange24h=format_amount(quote.price_change_24h) if quote and quote.price_change_24h is not None else "0",
            volume24h=format_amount(quote.volume_24h) if quote and quote.volume_24h is not None else "0",
            marketCap=format_amount(quote.market_cap) if quote and quote.market_cap is not None else "0",
        ))
    return result


@router.get("/trending", response_model=List[TrendingCoin])
async def trending(market: MarketDataService = Depends(get_market_data)):
    return await market.trending()


@router.get("/market/global", response_model=GlobalMarketOut)
async def global_market(market: MarketDataService = Depends(get_market_data)):
    return await market.global_market()


@router.get("/coins/{coin_id}", response_model=CoinDetailOut)
async def coin_detail(coin_id: str, market: MarketDataService = Depends(get_market_data)):
    return await market.coin(coin_id)


@router.get("/coins/{coin_id}/chart", response_model=MarketChartOut)
async def coin_chart(
    coin_id: str,
    days: str = Query("7", pattern=r"^(max|\d{1,4})$"),
    market: MarketDataService = Depends(get_market_data),
):
    return await market.chart(coin_id, days)
