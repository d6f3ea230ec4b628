"""Swap and spot-trade simulation.

Two phases per request:

* admission runs inside the HTTP request. It validates tokens, wallet,
  prices and balance, then records a ``pending`` transaction;
* settlement runs later from the scheduler. It moves the balances
  atomically against their current values and finishes the transaction as
  ``completed``, or as ``failed`` when the funds are gone, a failure
  injector vetoes it or the job is cancelled.
"""

import logging
import random
import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from core.errors import (
    ErrorCode,
    ErrorMessage,
    bad_request,
    insufficient_balance,
    not_found,
    service_unavailable,
)
from core.exceptions import InsufficientBalanceError
from ledger.domain import (
    Token,
    Transaction,
    TransactionDraft,
    TransactionStatus,
    TransactionType,
    User,
    fits_decimals,
    format_amount,
    multiply_exact,
    quantize_amount,
)
from ledger.repository import LedgerRepository
from prices.service import PriceService
from trading.settlement import SettlementScheduler

logger = logging.getLogger(__name__)

PRICE_IMPACT = "0.05"

FailureInjector = Callable[[Transaction], Optional[str]]


def simulate_tx_hash() -> str:
    return "0x" + secrets.token_hex(32)


def simulate_network_fee(rng: random.Random) -> Decimal:
    # between 0.001 and 0.010 ETH
    return Decimal(f"{rng.uniform(0.001, 0.010):.6f}")


@dataclass(frozen=True)
class SwapAdmission:
    transaction: Transaction
    from_token: Token
    to_token: Token
    rate: Decimal


@dataclass(frozen=True)
class TradeAdmission:
    transaction: Transaction
    token: Token
    base_token: Token
    amount: Decimal
    price: Decimal
    total: Decimal


class TransactionSimulator:
    def __init__(
        self,
        ledger: LedgerRepository,
        prices: PriceService,
        scheduler: SettlementScheduler,
        settlement_delay: float = 2.0,
        rng: random.Random | None = None,
        failure_injector: FailureInjector | None = None,
    ):
        self.ledger = ledger
        self.prices = prices
        self.scheduler = scheduler
        self.settlement_delay = settlement_delay
        self.failure_injector = failure_injector
        self._rng = rng or random.Random()

    # admission

    async def _token(self, token_id: int) -> Token:
        token = await self.ledger.get_token(token_id)
        if not token:
            raise not_found(ErrorCode.TOKEN_NOT_FOUND, ErrorMessage.TOKEN_NOT_FOUND, {"tokenId": token_id})
        return token

    async def _user(self, wallet_address: Optional[str]) -> User:
        if not wallet_address or not wallet_address.strip():
            raise bad_request(ErrorCode.WALLET_REQUIRED, ErrorMessage.WALLET_REQUIRED)
        return await self.ledger.get_or_create_user_by_wallet(wallet_address.strip())

    async def _reference_price(self, token: Token) -> Decimal:
        quote = await self.prices.quote_for(token)
        if quote is None or quote.price is None or quote.price <= 0:
            raise not_found(ErrorCode.PRICE_UNAVAILABLE, ErrorMessage.PRICE_UNAVAILABLE, {"token": token.symbol})
        return quote.price

    async def _require_balance(self, user: User, token: Token, amount: Decimal):
        balance = await self.ledger.get_balance(user.id, token.id)
        available = balance.amount if balance else Decimal("0")
        if available < amount:
            raise insufficient_balance(token.symbol, format_amount(available), format_amount(amount))

    def _require_precision(self, token: Token, amount: Decimal, field: str):
        if not fits_decimals(amount, token.decimals):
            raise bad_request(
                ErrorCode.INVALID_INPUT,
                f"{token.symbol} supports at most {token.decimals} decimal places",
                {field: format_amount(amount), "decimals": token.decimals},
            )

    def _require_nonzero(self, token: Token, amount: Decimal, field: str):
        if amount <= 0:
            raise bad_request(
                ErrorCode.INVALID_INPUT,
                f"Amount is below the smallest {token.symbol} unit",
                {field: format_amount(amount), "decimals": token.decimals},
            )

    async def submit_swap(
        self,
        from_token_id: int,
        to_token_id: int,
        from_amount: Decimal,
        wallet_address: Optional[str],
    ) -> SwapAdmission:
        if from_token_id == to_token_id:
            raise bad_request(ErrorCode.INVALID_INPUT, "Cannot swap a token for itself")

        from_token = await self._token(from_token_id)
        to_token = await self._token(to_token_id)
        user = await self._user(wallet_address)
        self._require_precision(from_token, from_amount, "fromAmount")

        from_price = await self._reference_price(from_token)
        to_price = await self._reference_price(to_token)

        await self._require_balance(user, from_token, from_amount)

        rate = from_price / to_price
        to_amount = quantize_amount(from_amount * rate, to_token.decimals)
        self._require_nonzero(to_token, to_amount, "toAmount")

        transaction = await self.ledger.create_transaction(TransactionDraft(
            user_id=user.id,
            type=TransactionType.SWAP,
            from_token_id=from_token.id,
            to_token_id=to_token.id,
            from_amount=from_amount,
            to_amount=to_amount,
            price=from_price,
            network_fee=simulate_network_fee(self._rng),
            metadata={"rate": format_amount(rate), "priceImpact": PRICE_IMPACT},
        ))
        logger.info(
            "Admitted swap %s: %s %s -> %s %s for user %s",
            transaction.id, from_amount, from_token.symbol, to_amount, to_token.symbol, user.id,
        )
        await self._schedule_admitted(transaction)
        return SwapAdmission(transaction=transaction, from_token=from_token, to_token=to_token, rate=rate)

    async def submit_trade(
        self,
        token_id: int,
        base_token_id: int,
        amount: Decimal,
        price: Decimal,
        side: TransactionType,
        wallet_address: Optional[str],
    ) -> TradeAdmission:
        if side not in (TransactionType.BUY, TransactionType.SELL):
            raise bad_request(ErrorCode.INVALID_INPUT, "Trade type must be buy or sell")
        if token_id == base_token_id:
            raise bad_request(ErrorCode.INVALID_INPUT, "Cannot trade a token against itself")

        token = await self._token(token_id)
        base_token = await self._token(base_token_id)
        user = await self._user(wallet_address)
        self._require_precision(token, amount, "amount")

        total = quantize_amount(multiply_exact(amount, price), base_token.decimals)

        if side == TransactionType.BUY:
            debit_token, debit_amount = base_token, total
            credit_token, credit_amount = token, amount
        else:
            debit_token, debit_amount = token, amount
            credit_token, credit_amount = base_token, total

        await self._require_balance(user, debit_token, debit_amount)
        self._require_nonzero(base_token, total, "total")

        transaction = await self.ledger.create_transaction(TransactionDraft(
            user_id=user.id,
            type=side,
            from_token_id=debit_token.id,
            to_token_id=credit_token.id,
            from_amount=debit_amount,
            to_amount=credit_amount,
            price=price,
            network_fee=simulate_network_fee(self._rng),
            metadata={"pair": f"{token.symbol}/{base_token.symbol}"},
        ))
        logger.info(
            "Admitted %s %s: %s %s @ %s %s for user %s",
            side.value, transaction.id, amount, token.symbol, price, base_token.symbol, user.id,
        )
        await self._schedule_admitted(transaction)
        return TradeAdmission(
            transaction=transaction,
            token=token,
            base_token=base_token,
            amount=amount,
            price=price,
            total=total,
        )

    def _schedule(self, transaction: Transaction):
        self.scheduler.schedule(transaction.id, self.settlement_delay, self.settle)

    async def _schedule_admitted(self, transaction: Transaction):
        # a pending row nobody will settle must not be left behind
        try:
            self._schedule(transaction)
        except RuntimeError as e:
            await self._fail(transaction, f"settlement unavailable ({e})")
            raise service_unavailable(
                ErrorCode.SETTLEMENT_UNAVAILABLE,
                ErrorMessage.SETTLEMENT_UNAVAILABLE,
                {"transactionId": transaction.id},
            ) from e

    # settlement

    async def _fail(self, transaction: Transaction, reason: str) -> Optional[Transaction]:
        logger.warning("Settlement of transaction %s failed: %s", transaction.id, reason)
        return await self.ledger.update_transaction_status(
            transaction.id,
            TransactionStatus.FAILED,
            metadata={"failureReason": reason},
        )

    async def settle(self, transaction_id: int) -> Optional[Transaction]:
        transaction = await self.ledger.get_transaction(transaction_id)
        if transaction is None:
            logger.warning("Settlement for unknown transaction %s", transaction_id)
            return None
        if transaction.status != TransactionStatus.PENDING:
            return transaction

        if self.failure_injector:
            reason = self.failure_injector(transaction)
            if reason:
                return await self._fail(transaction, reason)

        try:
            await self.ledger.apply_transfer(
                transaction.user_id,
                transaction.from_token_id,
                transaction.from_amount,
                transaction.to_token_id,
                transaction.to_amount,
            )
        except InsufficientBalanceError as e:
            return await self._fail(
                transaction,
                f"insufficient balance at settlement (available {format_amount(e.available)})",
            )

        settled = await self.ledger.update_transaction_status(
            transaction.id,
            TransactionStatus.COMPLETED,
            tx_hash=simulate_tx_hash(),
        )
        logger.info("Settled transaction %s (%s)", settled.id, settled.tx_hash)
        return settled

    async def cancel(self, transaction_id: int, reason: str = "cancelled") -> Optional[Transaction]:
        self.scheduler.cancel(transaction_id)
        transaction = await self.ledger.get_transaction(transaction_id)
        if transaction is None or transaction.status != TransactionStatus.PENDING:
            return transaction
        return await self._fail(transaction, reason)

    async def resume_pending(self) -> int:
        """Schedule settlement for pending transactions left by a previous run."""
        pending = await self.ledger.list_pending_transactions()
        for transaction in pending:
            self._schedule(transaction)
        if pending:
            logger.info("Resumed settlement of %d pending transactions", len(pending))
        return len(pending)

    async def shutdown(self):
        """Stop settling: cancel every outstanding job and fail its transaction."""
        outstanding = self.scheduler.scheduled_ids()
        self.scheduler.shutdown()
        for transaction_id in outstanding:
            await self.cancel(transaction_id, reason="cancelled at shutdown")
