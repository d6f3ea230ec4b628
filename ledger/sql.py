import functools
import logging
import random
import threading
from contextlib import nullcontext
from datetime import timezone
from decimal import Decimal
from typing import Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core import models
from core.database import Base, build_engine, build_session_factory
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
    TransactionType,
    User,
    check_transition,
    format_amount,
    to_decimal,
    utcnow,
)
from ledger.repository import LedgerRepository
from ledger.seed import DEFAULT_TOKENS, default_quote_fields, demo_balances, demo_username

logger = logging.getLogger(__name__)

_DECIMAL_QUOTE_FIELDS = tuple(f for f in QUOTE_FIELDS if f != "rank")


def _in_threadpool(method):
    """Expose a blocking session method as a coroutine run on the threadpool."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        return await run_in_threadpool(self._locked, method, *args, **kwargs)

    return wrapper


def _aware(value):
    # sqlite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _user(row: models.User) -> User:
    return User(
        id=row.id,
        username=row.username,
        wallet_address=row.wallet_address,
        created_at=_aware(row.created_at),
    )


def _token(row: models.Token) -> Token:
    return Token(
        id=row.id,
        symbol=row.symbol,
        name=row.name,
        logo_url=row.logo_url,
        decimals=row.decimals,
        contract_address=row.contract_address,
        network=row.network,
    )


def _balance(row: models.UserBalance) -> Balance:
    return Balance(
        id=row.id,
        user_id=row.user_id,
        token_id=row.token_id,
        amount=Decimal(row.balance),
        updated_at=_aware(row.updated_at),
    )


def _transaction(row: models.Transaction) -> Transaction:
    return Transaction(
        id=row.id,
        user_id=row.user_id,
        type=TransactionType(row.type),
        status=TransactionStatus(row.status),
        from_token_id=row.from_token_id,
        to_token_id=row.to_token_id,
        from_amount=Decimal(row.from_amount),
        to_amount=Decimal(row.to_amount),
        price=Decimal(row.price),
        network_fee=Decimal(row.network_fee),
        tx_hash=row.tx_hash,
        metadata=dict(row.meta or {}),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _quote(row: models.TokenPrice) -> PriceQuote:
    return PriceQuote(
        token_id=row.token_id,
        price=Decimal(row.price),
        price_change_24h=to_decimal(row.price_change_24h),
        volume_24h=to_decimal(row.volume_24h),
        market_cap=to_decimal(row.market_cap),
        rank=row.rank,
        supply=to_decimal(row.supply),
        ath=to_decimal(row.ath),
        ath_change_percentage=to_decimal(row.ath_change_percentage),
        updated_at=_aware(row.updated_at),
    )


class SqlLedgerRepository(LedgerRepository):
    """Ledger on SQLAlchemy; defaults to an in-memory SQLite database.

    Session work is blocking, so every public method runs on the threadpool
    the way sync FastAPI routes do. SQLite shares one connection between
    those threads and gets a lock around each call; other databases rely on
    their row locks.
    """

    def __init__(self, database_url: str = "sqlite://", rng: random.Random | None = None, seed_defaults: bool = True):
        self._rng = rng or random.Random()
        self.engine = build_engine(database_url)
        self.SessionLocal = build_session_factory(self.engine)
        self._lock = threading.Lock() if self.engine.dialect.name == "sqlite" else nullcontext()

        Base.metadata.create_all(bind=self.engine)

        if seed_defaults:
            self._seed_defaults()

    def _seed_defaults(self):
        with self.SessionLocal() as db:
            if db.query(models.Token).count():
                return
            for new_token in DEFAULT_TOKENS:
                row = models.Token(**vars(new_token))
                db.add(row)
                db.flush()
                fields = default_quote_fields(row.symbol)
                if fields:
                    self._merge_price(db, row.id, fields)
            db.commit()

    def _locked(self, method, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    def dispose(self):
        self.engine.dispose()

    # users

    @_in_threadpool
    def get_user(self, user_id: int) -> Optional[User]:
        with self.SessionLocal() as db:
            row = db.query(models.User).filter_by(id=user_id).first()
            return _user(row) if row else None

    @_in_threadpool
    def get_user_by_wallet(self, wallet_address: str) -> Optional[User]:
        with self.SessionLocal() as db:
            row = db.query(models.User).filter_by(wallet_address=wallet_address).first()
            return _user(row) if row else None

    @_in_threadpool
    def get_or_create_user_by_wallet(self, wallet_address: str) -> User:
        with self.SessionLocal() as db:
            existing = db.query(models.User).filter_by(wallet_address=wallet_address).first()
            if existing:
                return _user(existing)

            now = utcnow()
            row = models.User(
                username=demo_username(self._rng),
                wallet_address=wallet_address,
                created_at=now,
            )
            db.add(row)
            try:
                db.flush()
            except IntegrityError:
                # another request created it first
                db.rollback()
                return _user(db.query(models.User).filter_by(wallet_address=wallet_address).one())

            tokens = [_token(t) for t in db.query(models.Token).all()]
            for token_id, amount in demo_balances(tokens, self._rng).items():
                db.add(models.UserBalance(
                    user_id=row.id,
                    token_id=token_id,
                    balance=format_amount(amount),
                    updated_at=now,
                ))
            db.commit()

            logger.info("Created user %s for wallet %s", row.id, wallet_address)
            return _user(row)

    # tokens

    @_in_threadpool
    def get_token(self, token_id: int) -> Optional[Token]:
        with self.SessionLocal() as db:
            row = db.query(models.Token).filter_by(id=token_id).first()
            return _token(row) if row else None

    @_in_threadpool
    def get_token_by_symbol(self, symbol: str) -> Optional[Token]:
        with self.SessionLocal() as db:
            row = db.query(models.Token).filter_by(symbol=symbol).first()
            return _token(row) if row else None

    @_in_threadpool
    def list_tokens(self) -> list[Token]:
        with self.SessionLocal() as db:
            return [_token(row) for row in db.query(models.Token).order_by(models.Token.id).all()]

    @_in_threadpool
    def add_token(self, token: NewToken) -> Token:
        with self.SessionLocal() as db:
            row = models.Token(**vars(token))
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise ValueError(f"Token symbol {token.symbol} already registered")
            return _token(row)

    # balances

    @_in_threadpool
    def get_balance(self, user_id: int, token_id: int) -> Optional[Balance]:
        with self.SessionLocal() as db:
            row = db.query(models.UserBalance).filter_by(user_id=user_id, token_id=token_id).first()
            return _balance(row) if row else None

    @_in_threadpool
    def list_balances(self, user_id: int) -> list[Balance]:
        with self.SessionLocal() as db:
            rows = (
                db.query(models.UserBalance)
                .filter_by(user_id=user_id)
                .order_by(models.UserBalance.id)
                .all()
            )
            return [_balance(row) for row in rows]

    @_in_threadpool
    def set_balance(self, user_id: int, token_id: int, amount: Decimal) -> Balance:
        if amount < 0:
            raise ValueError("Balance cannot be negative")

        with self.SessionLocal() as db:
            row = self._write_balance(db, user_id, token_id, amount)
            db.commit()
            return _balance(row)

    @_in_threadpool
    def apply_transfer(
        self,
        user_id: int,
        debit_token_id: int,
        debit_amount: Decimal,
        credit_token_id: int,
        credit_amount: Decimal,
    ) -> tuple[Balance, Balance]:
        with self.SessionLocal() as db:
            # lock the debited row so concurrent settlements see each other
            source = (
                db.query(models.UserBalance)
                .filter_by(user_id=user_id, token_id=debit_token_id)
                .with_for_update()
                .first()
            )
            available = Decimal(source.balance) if source else Decimal("0")
            if available < debit_amount:
                db.rollback()
                raise InsufficientBalanceError(user_id, debit_token_id, available, debit_amount)

            debited = self._write_balance(db, user_id, debit_token_id, available - debit_amount)

            target = (
                db.query(models.UserBalance)
                .filter_by(user_id=user_id, token_id=credit_token_id)
                .with_for_update()
                .first()
            )
            target_amount = Decimal(target.balance) if target else Decimal("0")
            credited = self._write_balance(db, user_id, credit_token_id, target_amount + credit_amount)

            db.commit()
            return _balance(debited), _balance(credited)

    def _write_balance(self, db: Session, user_id: int, token_id: int, amount: Decimal) -> models.UserBalance:
        row = db.query(models.UserBalance).filter_by(user_id=user_id, token_id=token_id).first()
        if row is None:
            row = models.UserBalance(user_id=user_id, token_id=token_id)
            db.add(row)
        row.balance = format_amount(amount)
        row.updated_at = utcnow()
        db.flush()
        return row

    # transactions

    @_in_threadpool
    def create_transaction(self, draft: TransactionDraft) -> Transaction:
        with self.SessionLocal() as db:
            now = utcnow()
            row = models.Transaction(
                user_id=draft.user_id,
                type=draft.type.value,
                status=TransactionStatus.PENDING.value,
                from_token_id=draft.from_token_id,
                to_token_id=draft.to_token_id,
                from_amount=format_amount(draft.from_amount),
                to_amount=format_amount(draft.to_amount),
                price=format_amount(draft.price),
                network_fee=format_amount(draft.network_fee),
                meta=dict(draft.metadata),
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            db.commit()
            return _transaction(row)

    @_in_threadpool
    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        with self.SessionLocal() as db:
            row = db.query(models.Transaction).filter_by(id=transaction_id).first()
            return _transaction(row) if row else None

    @_in_threadpool
    def list_user_transactions(self, user_id: int, limit: int = 10) -> list[Transaction]:
        with self.SessionLocal() as db:
            rows = (
                db.query(models.Transaction)
                .filter(models.Transaction.user_id == user_id)
                .order_by(models.Transaction.created_at.desc(), models.Transaction.id.desc())
                .limit(limit)
                .all()
            )
            return [_transaction(row) for row in rows]

    @_in_threadpool
    def list_pending_transactions(self) -> list[Transaction]:
        with self.SessionLocal() as db:
            rows = db.query(models.Transaction).filter_by(status=TransactionStatus.PENDING.value).all()
            return [_transaction(row) for row in rows]

    @_in_threadpool
    def update_transaction_status(
        self,
        transaction_id: int,
        status: TransactionStatus,
        tx_hash: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[Transaction]:
        with self.SessionLocal() as db:
            row = (
                db.query(models.Transaction)
                .filter_by(id=transaction_id)
                .with_for_update()
                .first()
            )
            if row is None:
                return None

            check_transition(transaction_id, TransactionStatus(row.status), status)

            row.status = status.value
            if tx_hash:
                row.tx_hash = tx_hash
            if metadata:
                row.meta = {**(row.meta or {}), **metadata}
            row.updated_at = utcnow()
            db.commit()
            return _transaction(row)

    # prices

    @_in_threadpool
    def get_token_price(self, token_id: int) -> Optional[PriceQuote]:
        with self.SessionLocal() as db:
            row = db.query(models.TokenPrice).filter_by(token_id=token_id).first()
            return _quote(row) if row else None

    @_in_threadpool
    def list_token_prices(self) -> list[PriceQuote]:
        with self.SessionLocal() as db:
            return [_quote(row) for row in db.query(models.TokenPrice).all()]

    @_in_threadpool
    def upsert_token_price(self, token_id: int, **fields) -> PriceQuote:
        with self.SessionLocal() as db:
            row = self._merge_price(db, token_id, fields)
            db.commit()
            return _quote(row)

    def _merge_price(self, db: Session, token_id: int, fields: dict) -> models.TokenPrice:
        unknown = set(fields) - set(QUOTE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown quote fields: {sorted(unknown)}")

        row = db.query(models.TokenPrice).filter_by(token_id=token_id).first()
        if row is None:
            if fields.get("price") is None:
                raise ValueError("A new quote needs a price")
            row = models.TokenPrice(token_id=token_id)
            db.add(row)

        for name, value in fields.items():
            if value is None:
                continue
            setattr(row, name, format_amount(value) if name in _DECIMAL_QUOTE_FIELDS else value)
        row.updated_at = utcnow()
        db.flush()
        return row
