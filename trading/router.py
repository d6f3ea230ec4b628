import random

from fastapi import APIRouter, Depends

from core.dependencies import get_simulator
from ledger.domain import Token, TransactionType, format_amount, utcnow
from trading.schemas import (
    GasPriceResponse,
    SwapRequest,
    SwapResponse,
    TokenSummary,
    TradeRequest,
    TradeResponse,
)
from trading.simulator import TransactionSimulator

router = APIRouter(prefix="/api", tags=["Trading"])


def _summary(token: Token) -> TokenSummary:
    return TokenSummary(id=token.id, symbol=token.symbol, name=token.name)


@router.post("/swap", response_model=SwapResponse)
async def swap_tokens(
    payload: SwapRequest,
    simulator: TransactionSimulator = Depends(get_simulator),
):
    admission = await simulator.submit_swap(
        payload.fromTokenId,
        payload.toTokenId,
        payload.fromAmount,
        payload.walletAddress,
    )
    tx = admission.transaction

    return SwapResponse(
        transactionId=tx.id,
        status=tx.status.value,
        fromToken=_summary(admission.from_token),
        toToken=_summary(admission.to_token),
        fromAmount=format_amount(tx.from_amount),
        toAmount=format_amount(tx.to_amount),
        rate=format_amount(admission.rate),
        networkFee=format_amount(tx.network_fee),
    )


@router.post("/trade", response_model=TradeResponse)
async def trade_tokens(
    payload: TradeRequest,
    simulator: TransactionSimulator = Depends(get_simulator),
):
    admission = await simulator.submit_trade(
        payload.tokenId,
        payload.baseTokenId,
        payload.amount,
        payload.price,
        TransactionType(payload.type),
        payload.walletAddress,
    )
    tx = admission.transaction

    return TradeResponse(
        transactionId=tx.id,
        status=tx.status.value,
        type=tx.type.value,
        token=_summary(admission.token),
        baseToken=_summary(admission.base_token),
        amount=format_amount(admission.amount),
        price=format_amount(admission.price),
        total=format_amount(admission.total),
        networkFee=format_amount(tx.network_fee),
    )


@router.get("/gas-price", response_model=GasPriceResponse)
async def gas_price():
    # simulated, no chain behind it
    return GasPriceResponse(
        gasPrice=random.randint(20, 89),
        unit="Gwei",
        timestamp=utcnow().isoformat(),
    )
