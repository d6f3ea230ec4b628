from decimal import Decimal

from fastapi import APIRouter, Depends

from core.dependencies import get_ledger, get_price_service
from core.errors import ErrorCode, ErrorMessage, bad_request
from ledger.domain import format_amount, quantize_amount
from ledger.repository import LedgerRepository
from portfolio.schemas import PortfolioAsset, PortfolioResponse, PortfolioToken
from prices.service import PriceService

router = APIRouter(prefix="/api/portfolio", tags=["Portfolio"])


@router.get("/{wallet_address}", response_model=PortfolioResponse)
async def get_portfolio(
    wallet_address: str,
    ledger: LedgerRepository = Depends(get_ledger),
    prices: PriceService = Depends(get_price_service),
):
    wallet_address = wallet_address.strip()
    if not wallet_address:
        raise bad_request(ErrorCode.WALLET_REQUIRED, ErrorMessage.WALLET_REQUIRED)

    user = await ledger.get_or_create_user_by_wallet(wallet_address)

    assets = []
    total = Decimal("0")
    for balance in await ledger.list_balances(user.id):
        token = await ledger.get_token(balance.token_id)
        if token is None:
            continue

        quote = await prices.quote_for(token)
        price = quote.price if quote else Decimal("0")
        change = quote.price_change_24h if quote and quote.price_change_24h is not None else Decimal("0")
        value = quantize_amount(balance.amount * price, 2)
        total += value

        assets.append(PortfolioAsset(
            id=balance.id,
            token=PortfolioToken(
                id=token.id,
                symbol=token.symbol,
                name=token.name,
                logoUrl=token.logo_url,
            ),
            balance=format_amount(balance.amount),
            value=f"{value:.2f}",
            price=format_amount(price),
            priceChange24h=format_amount(change),
        ))

    return PortfolioResponse(
        walletAddress=wallet_address,
        totalValue=f"{total:.2f}",
        assets=assets,
    )
