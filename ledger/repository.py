"""Storage interface for users, tokens, balances, transactions and quotes.

Every accessor is a coroutine so a backend that really awaits I/O can
replace the in-memory maps without touching callers.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from ledger.domain import (
    Balance,
    NewToken,
    PriceQuote,
    Token,
    Transaction,
    TransactionDraft,
    TransactionStatus,
    User,
)


class LedgerRepository(ABC):

    # users

    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[User]:
        ...

    @abstractmethod
    async def get_user_by_wallet(self, wallet_address: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_or_create_user_by_wallet(self, wallet_address: str) -> User:
        """Return the wallet's user, creating it with seeded demo balances.

        Seeding happens only on creation; a second call returns the same
        user untouched.
        """

    # tokens

    @abstractmethod
    async def get_token(self, token_id: int) -> Optional[Token]:
        ...

    @abstractmethod
    async def get_token_by_symbol(self, symbol: str) -> Optional[Token]:
        ...

    @abstractmethod
    async def list_tokens(self) -> list[Token]:
        ...

    @abstractmethod
    async def add_token(self, token: NewToken) -> Token:
        ...

    # balances

    @abstractmethod
    async def get_balance(self, user_id: int, token_id: int) -> Optional[Balance]:
        ...

    @abstractmethod
    async def list_balances(self, user_id: int) -> list[Balance]:
        ...

    @abstractmethod
    async def set_balance(self, user_id: int, token_id: int, amount: Decimal) -> Balance:
        ...

    @abstractmethod
    async def apply_transfer(
        self,
        user_id: int,
        debit_token_id: int,
        debit_amount: Decimal,
        credit_token_id: int,
        credit_amount: Decimal,
    ) -> tuple[Balance, Balance]:
        """Debit one balance and credit another as a single step.

        Works on the balances as they are now, not as they were at
        admission. Raises ``InsufficientBalanceError`` and changes nothing
        when the debit would go below zero.
        """

    # transactions

    @abstractmethod
    async def create_transaction(self, draft: TransactionDraft) -> Transaction:
        ...

    @abstractmethod
    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def list_user_transactions(self, user_id: int, limit: int = 10) -> list[Transaction]:
        ...

    @abstractmethod
    async def list_pending_transactions(self) -> list[Transaction]:
        ...

    @abstractmethod
    async def update_transaction_status(
        self,
        transaction_id: int,
        status: TransactionStatus,
        tx_hash: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[Transaction]:
        """Move a transaction along its lifecycle.

        Returns ``None`` for an unknown id. ``metadata`` is merged into the
        existing metadata.
        """

    # prices

    @abstractmethod
    async def get_token_price(self, token_id: int) -> Optional[PriceQuote]:
        ...

    @abstractmethod
    async def list_token_prices(self) -> list[PriceQuote]:
        ...

    @abstractmethod
    async def upsert_token_price(self, token_id: int, **fields) -> PriceQuote:
        """Merge the given quote fields into the stored quote.

        ``None`` values leave the stored field as it was.
        """
