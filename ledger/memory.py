import asyncio
import itertools
import logging
import random
from dataclasses import replace
from decimal import Decimal
from typing import Optional

from core.exceptions import InsufficientBalanceError
from ledger.domain import (
    QUOTE_FIELDS,
    Balance,
    NewToken,
    PriceQuote,
    Token,
    Transaction,
    TransactionDraft,
    TransactionStatus,
    User,
    check_transition,
    utcnow,
)
from ledger.repository import LedgerRepository
from ledger.seed import DEFAULT_TOKENS, default_quote_fields, demo_balances, demo_username

logger = logging.getLogger(__name__)


class InMemoryLedgerRepository(LedgerRepository):
    """Process-local ledger backed by plain dicts."""

    def __init__(self, rng: random.Random | None = None, seed_defaults: bool = True):
        self._rng = rng or random.Random()

        self._users: dict[int, User] = {}
        self._wallets: dict[str, int] = {}
        self._tokens: dict[int, Token] = {}
        self._balances: dict[tuple[int, int], Balance] = {}
        self._transactions: dict[int, Transaction] = {}
        self._prices: dict[int, PriceQuote] = {}

        self._user_ids = itertools.count(1)
        self._token_ids = itertools.count(1)
        self._balance_ids = itertools.count(1)
        self._transaction_ids = itertools.count(1)

        self._transfer_lock = asyncio.Lock()

        if seed_defaults:
            self._seed_defaults()

    def _seed_defaults(self):
        for new_token in DEFAULT_TOKENS:
            token = self._insert_token(new_token)
            fields = default_quote_fields(token.symbol)
            if fields:
                self._merge_price(token.id, fields)

    # users

    async def get_user(self, user_id: int) -> Optional[User]:
        return self._users.get(user_id)

    async def get_user_by_wallet(self, wallet_address: str) -> Optional[User]:
        user_id = self._wallets.get(wallet_address)
        return self._users.get(user_id) if user_id is not None else None

    async def get_or_create_user_by_wallet(self, wallet_address: str) -> User:
        existing = await self.get_user_by_wallet(wallet_address)
        if existing:
            return existing

        user = User(
            id=next(self._user_ids),
            username=demo_username(self._rng),
            wallet_address=wallet_address,
            created_at=utcnow(),
        )
        self._users[user.id] = user
        self._wallets[wallet_address] = user.id

        for token_id, amount in demo_balances(list(self._tokens.values()), self._rng).items():
            self._write_balance(user.id, token_id, amount)

        logger.info("Created user %s for wallet %s", user.id, wallet_address)
        return user

    # tokens

    async def get_token(self, token_id: int) -> Optional[Token]:
        return self._tokens.get(token_id)

    async def get_token_by_symbol(self, symbol: str) -> Optional[Token]:
        for token in self._tokens.values():
            if token.symbol == symbol:
                return token
        return None

    async def list_tokens(self) -> list[Token]:
        return list(self._tokens.values())

    async def add_token(self, token: NewToken) -> Token:
        if await self.get_token_by_symbol(token.symbol):
            raise ValueError(f"Token symbol {token.symbol} already registered")
        return self._insert_token(token)

    def _insert_token(self, new_token: NewToken) -> Token:
        token = Token(id=next(self._token_ids), **vars(new_token))
        self._tokens[token.id] = token
        return token

    # balances

    async def get_balance(self, user_id: int, token_id: int) -> Optional[Balance]:
        return self._balances.get((user_id, token_id))

    async def list_balances(self, user_id: int) -> list[Balance]:
        return [b for (owner, _), b in self._balances.items() if owner == user_id]

    async def set_balance(self, user_id: int, token_id: int, amount: Decimal) -> Balance:
        if amount < 0:
            raise ValueError("Balance cannot be negative")
        return self._write_balance(user_id, token_id, amount)

    async def apply_transfer(
        self,
        user_id: int,
        debit_token_id: int,
        debit_amount: Decimal,
        credit_token_id: int,
        credit_amount: Decimal,
    ) -> tuple[Balance, Balance]:
        async with self._transfer_lock:
            current = self._balances.get((user_id, debit_token_id))
            available = current.amount if current else Decimal("0")
            if available < debit_amount:
                raise InsufficientBalanceError(user_id, debit_token_id, available, debit_amount)

            debited = self._write_balance(user_id, debit_token_id, available - debit_amount)

            target = self._balances.get((user_id, credit_token_id))
            target_amount = target.amount if target else Decimal("0")
            credited = self._write_balance(user_id, credit_token_id, target_amount + credit_amount)

        return debited, credited

    def _write_balance(self, user_id: int, token_id: int, amount: Decimal) -> Balance:
        key = (user_id, token_id)
        existing = self._balances.get(key)
        if existing:
            balance = replace(existing, amount=amount, updated_at=utcnow())
        else:
            balance = Balance(
                id=next(self._balance_ids),
                user_id=user_id,
                token_id=token_id,
                amount=amount,
                updated_at=utcnow(),
            )
        self._balances[key] = balance
        return balance

    # transactions

    async def create_transaction(self, draft: TransactionDraft) -> Transaction:
        now = utcnow()
        transaction = Transaction(
            id=next(self._transaction_ids),
            user_id=draft.user_id,
            type=draft.type,
            status=TransactionStatus.PENDING,
            from_token_id=draft.from_token_id,
            to_token_id=draft.to_token_id,
            from_amount=draft.from_amount,
            to_amount=draft.to_amount,
            price=draft.price,
            network_fee=draft.network_fee,
            tx_hash=None,
            metadata=dict(draft.metadata),
            created_at=now,
            updated_at=now,
        )
        self._transactions[transaction.id] = transaction
        return transaction

    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return self._transactions.get(transaction_id)

    async def list_user_transactions(self, user_id: int, limit: int = 10) -> list[Transaction]:
        owned = [t for t in self._transactions.values() if t.user_id == user_id]
        owned.sort(key=lambda t: (t.created_at, t.id), reverse=True)
        return owned[:limit]

    async def list_pending_transactions(self) -> list[Transaction]:
        return [t for t in self._transactions.values() if t.status == TransactionStatus.PENDING]

    async def update_transaction_status(
        self,
        transaction_id: int,
        status: TransactionStatus,
        tx_hash: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[Transaction]:
        transaction = self._transactions.get(transaction_id)
        if transaction is None:
            return None

        check_transition(transaction_id, transaction.status, status)

        updated = replace(
            transaction,
            status=status,
            tx_hash=tx_hash or transaction.tx_hash,
            metadata={**transaction.metadata, **(metadata or {})},
            updated_at=utcnow(),
        )
        self._transactions[transaction_id] = updated
        return updated

    # prices

    async def get_token_price(self, token_id: int) -> Optional[PriceQuote]:
        return self._prices.get(token_id)

    async def list_token_prices(self) -> list[PriceQuote]:
        return list(self._prices.values())

    async def upsert_token_price(self, token_id: int, **fields) -> PriceQuote:
        return self._merge_price(token_id, fields)

    def _merge_price(self, token_id: int, fields: dict) -> PriceQuote:
        unknown = set(fields) - set(QUOTE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown quote fields: {sorted(unknown)}")
        fields = {k: v for k, v in fields.items() if v is not None}

        existing = self._prices.get(token_id)
        if existing:
            quote = replace(existing, **fields, updated_at=utcnow())
        else:
            if fields.get("price") is None:
                raise ValueError("A new quote needs a price")
            quote = PriceQuote(token_id=token_id, **fields, updated_at=utcnow())
        self._prices[token_id] = quote
        return quote
