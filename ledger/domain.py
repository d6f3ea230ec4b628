"""Ledger records and amount helpers.

Records are frozen dataclasses; repositories hand out copies and replace
them on update, so nothing outside a repository can mutate stored state.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN, localcontext
from enum import Enum
from typing import Any, Optional

from core.exceptions import InvalidTransitionError


class TransactionType(str, Enum):
    SWAP = "swap"
    BUY = "buy"
    SELL = "sell"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS = {
    TransactionStatus.PENDING: {TransactionStatus.COMPLETED, TransactionStatus.FAILED},
    TransactionStatus.COMPLETED: set(),
    TransactionStatus.FAILED: set(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class User:
    id: int
    username: str
    wallet_address: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class Token:
    id: int
    symbol: str
    name: str
    logo_url: Optional[str]
    decimals: int
    contract_address: Optional[str]
    network: str


@dataclass(frozen=True)
class NewToken:
    symbol: str
    name: str
    logo_url: Optional[str] = None
    decimals: int = 18
    contract_address: Optional[str] = None
    network: str = "ethereum"


@dataclass(frozen=True)
class Balance:
    user_id: int
    token_id: int
    amount: Decimal
    updated_at: datetime
    id: int = 0


@dataclass(frozen=True)
class TransactionDraft:
    user_id: int
    type: TransactionType
    from_token_id: int
    to_token_id: int
    from_amount: Decimal
    to_amount: Decimal
    price: Decimal
    network_fee: Decimal
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Transaction:
    id: int
    user_id: int
    type: TransactionType
    status: TransactionStatus
    from_token_id: int
    to_token_id: int
    from_amount: Decimal
    to_amount: Decimal
    price: Decimal
    network_fee: Decimal
    tx_hash: Optional[str]
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class PriceQuote:
    """Latest known market data for one token."""

    token_id: int
    price: Decimal
    price_change_24h: Optional[Decimal] = None
    volume_24h: Optional[Decimal] = None
    market_cap: Optional[Decimal] = None
    rank: Optional[int] = None
    supply: Optional[Decimal] = None
    ath: Optional[Decimal] = None
    ath_change_percentage: Optional[Decimal] = None
    updated_at: Optional[datetime] = None


QUOTE_FIELDS = (
    "price",
    "price_change_24h",
    "volume_24h",
    "market_cap",
    "rank",
    "supply",
    "ath",
    "ath_change_percentage",
)


def check_transition(transaction_id: int, current: TransactionStatus, requested: TransactionStatus) -> None:
    if requested not in _TRANSITIONS[current]:
        raise InvalidTransitionError(transaction_id, current.value, requested.value)


def to_decimal(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _digits(value: Decimal) -> int:
    return len(value.as_tuple().digits)


def quantize_amount(value: Decimal, decimals: int) -> Decimal:
    # Context wide enough for every integer digit plus the token's decimals.
    with localcontext() as ctx:
        ctx.prec = max(80, value.adjusted() + decimals + 2)
        return value.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)


def multiply_exact(a: Decimal, b: Decimal) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = max(80, _digits(a) + _digits(b))
        return a * b


def fits_decimals(value: Decimal, decimals: int) -> bool:
    """True when ``value`` carries no digits below the token's smallest unit."""
    return quantize_amount(value, decimals) == value


def format_amount(value: Optional[Decimal]) -> Optional[str]:
    """Plain decimal string without exponent or trailing zeros."""
    if value is None:
        return None
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
