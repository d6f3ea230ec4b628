from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

# widest amount a request may carry, integer and fractional digits together
AMOUNT_DIGITS = 40


class SwapRequest(BaseModel):
    fromTokenId: int
    toTokenId: int
    fromAmount: Decimal = Field(gt=0, max_digits=AMOUNT_DIGITS)
    walletAddress: Optional[str] = None


class TradeRequest(BaseModel):
    tokenId: int
    baseTokenId: int
    amount: Decimal = Field(gt=0, max_digits=AMOUNT_DIGITS)
    price: Decimal = Field(gt=0, max_digits=AMOUNT_DIGITS)
    type: Literal["buy", "sell"]
    walletAddress: Optional[str] = None


class TokenSummary(BaseModel):
    id: int
    symbol: str
    name: str


class SwapResponse(BaseModel):
    transactionId: int
    status: str
    fromToken: TokenSummary
    toToken: TokenSummary
    fromAmount: str
    toAmount: str
    rate: str
    networkFee: str


class TradeResponse(BaseModel):
    transactionId: int
    status: str
    type: str
    token: TokenSummary
    baseToken: TokenSummary
    amount: str
    price: str
    total: str
    networkFee: str


class GasPriceResponse(BaseModel):
    gasPrice: int
    unit: str
    timestamp: str
