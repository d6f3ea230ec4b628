import asyncio
import threading
from decimal import Decimal

import pytest

from core.exceptions import InsufficientBalanceError, InvalidTransitionError
from ledger.domain import (
    NewToken,
    TransactionDraft,
    TransactionStatus,
    TransactionType,
    fits_decimals,
    format_amount,
    multiply_exact,
    quantize_amount,
)
from ledger.sql import SqlLedgerRepository

WALLET = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"


def _draft(user_id: int, **overrides) -> TransactionDraft:
    values = dict(
        user_id=user_id,
        type=TransactionType.SWAP,
        from_token_id=1,
        to_token_id=3,
        from_amount=Decimal("0.5"),
        to_amount=Decimal("1500"),
        price=Decimal("3000"),
        network_fee=Decimal("0.002"),
        metadata={"rate": "3000"},
    )
    values.update(overrides)
    return TransactionDraft(**values)


async def test_default_tokens_are_seeded_with_quotes(ledger):
    tokens = await ledger.list_tokens()
    assert [t.symbol for t in tokens] == ["ETH", "BTC", "USDT", "SOL", "ADA"]

    eth = await ledger.get_token_by_symbol("ETH")
    quote = await ledger.get_token_price(eth.id)
    assert quote.price == Decimal("3245.67")
    assert len(await ledger.list_token_prices()) == 5


async def test_get_or_create_user_is_idempotent(ledger):
    first = await ledger.get_or_create_user_by_wallet(WALLET)
    second = await ledger.get_or_create_user_by_wallet(WALLET)

    assert first.id == second.id
    assert first.username.startswith("user_")
    assert (await ledger.get_user_by_wallet(WALLET)).id == first.id
    assert (await ledger.get_user(first.id)).wallet_address == WALLET
    assert await ledger.get_user(999) is None


async def test_new_user_gets_one_positive_balance_per_token(ledger):
    user = await ledger.get_or_create_user_by_wallet(WALLET)
    await ledger.get_or_create_user_by_wallet(WALLET)

    balances = await ledger.list_balances(user.id)
    tokens = await ledger.list_tokens()
    assert sorted(b.token_id for b in balances) == sorted(t.id for t in tokens)
    assert all(b.amount > 0 for b in balances)

    usdt = await ledger.get_token_by_symbol("USDT")
    usdt_balance = await ledger.get_balance(user.id, usdt.id)
    assert Decimal("1000") <= usdt_balance.amount <= Decimal("6000")


async def test_add_token_rejects_duplicate_symbol(ledger):
    token = await ledger.add_token(NewToken(symbol="LINK", name="Chainlink"))
    assert token.decimals == 18
    assert (await ledger.get_token(token.id)).symbol == "LINK"

    with pytest.raises(ValueError):
        await ledger.add_token(NewToken(symbol="LINK", name="Chainlink again"))


async def test_set_balance_rejects_negative(ledger):
    user = await ledger.get_or_create_user_by_wallet(WALLET)
    with pytest.raises(ValueError):
        await ledger.set_balance(user.id, 1, Decimal("-1"))


async def test_apply_transfer_moves_both_balances(ledger):
    user = await ledger.get_or_create_user_by_wallet(WALLET)
    await ledger.set_balance(user.id, 1, Decimal("2"))
    await ledger.set_balance(user.id, 3, Decimal("100"))

    debited, credited = await ledger.apply_transfer(user.id, 1, Decimal("0.5"), 3, Decimal("1500.25"))

    assert debited.amount == Decimal("1.5")
    assert credited.amount == Decimal("1600.25")
    assert (await ledger.get_balance(user.id, 3)).amount == Decimal("1600.25")


async def test_apply_transfer_rejects_overdraft_and_changes_nothing(ledger):
    user = await ledger.get_or_create_user_by_wallet(WALLET)
    await ledger.set_balance(user.id, 1, Decimal("0.25"))
    before = (await ledger.get_balance(user.id, 3)).amount

    with pytest.raises(InsufficientBalanceError) as exc:
        await ledger.apply_transfer(user.id, 1, Decimal("1"), 3, Decimal("3000"))

    assert exc.value.available == Decimal("0.25")
    assert (await ledger.get_balance(user.id, 1)).amount == Decimal("0.25")
    assert (await ledger.get_balance(user.id, 3)).amount == before


async def test_concurrent_transfers_never_overdraw(ledger):
    user = await ledger.get_or_create_user_by_wallet(WALLET)
    await ledger.set_balance(user.id, 1, Decimal("2"))

    results = await asyncio.gather(
        *(ledger.apply_transfer(user.id, 1, Decimal("1.5"), 3, Decimal("4500")) for _ in range(2)),
        return_exceptions=True,
    )

    assert sum(isinstance(r, InsufficientBalanceError) for r in results) == 1
    assert (await ledger.get_balance(user.id, 1)).amount == Decimal("0.5")


async def test_sql_sessions_run_off_the_event_loop_thread():
    repo = SqlLedgerRepository("sqlite://")
    open_session = repo.SessionLocal
    threads = []

    def recording_session():
        threads.append(threading.get_ident())
        return open_session()

    repo.SessionLocal = recording_session
    try:
        await repo.get_or_create_user_by_wallet(WALLET)
        await repo.list_tokens()
    finally:
        repo.dispose()

    assert threads
    assert threading.get_ident() not in threads


async def test_transaction_lifecycle(ledger):
    user = await ledger.get_or_create_user_by_wallet(WALLET)
    tx = await ledger.create_transaction(_draft(user.id))

    assert tx.status == TransactionStatus.PENDING
    assert tx.tx_hash is None
    assert [t.id for t in await ledger.list_pending_transactions()] == [tx.id]

    done = await ledger.update_transaction_status(
        tx.id, TransactionStatus.COMPLETED, tx_hash="0xabc", metadata={"note": "ok"}
    )
    assert done.status == TransactionStatus.COMPLETED
    assert done.tx_hash == "0xabc"
    assert done.metadata == {"rate": "3000", "note": "ok"}
    assert done.from_amount == Decimal("0.5")
    assert await ledger.list_pending_transactions() == []

    with pytest.raises(InvalidTransitionError):
        await ledger.update_transaction_status(tx.id, TransactionStatus.FAILED)


async def test_update_unknown_transaction_returns_none(ledger):
    assert await ledger.update_transaction_status(999, TransactionStatus.COMPLETED) is None
    assert await ledger.get_transaction(999) is None


async def test_user_history_is_newest_first_and_limited(ledger):
    user = await ledger.get_or_create_user_by_wallet(WALLET)
    other = await ledger.get_or_create_user_by_wallet("0xother")
    created = [await ledger.create_transaction(_draft(user.id)) for _ in range(4)]
    await ledger.create_transaction(_draft(other.id))

    history = await ledger.list_user_transactions(user.id, limit=3)

    assert [t.id for t in history] == [t.id for t in reversed(created)][:3]


async def test_upsert_price_merges_and_skips_missing_fields(ledger):
    sol = await ledger.get_token_by_symbol("SOL")

    quote = await ledger.upsert_token_price(sol.id, price=Decimal("101.5"), market_cap=None, rank=5)

    assert quote.price == Decimal("101.5")
    assert quote.price_change_24h == Decimal("-0.65")
    assert quote.rank == 5
    assert quote.market_cap is None


async def test_new_quote_requires_price(ledger):
    token = await ledger.add_token(NewToken(symbol="DOT", name="Polkadot", decimals=10))
    with pytest.raises(ValueError):
        await ledger.upsert_token_price(token.id, volume_24h=Decimal("5"))


def test_quantize_rounds_down_to_token_decimals():
    assert quantize_amount(Decimal("0.123456789"), 6) == Decimal("0.123456")
    assert quantize_amount(Decimal("3245.67") * Decimal("1.5"), 18) == Decimal("4868.505")


def test_quantize_handles_amounts_wider_than_the_default_context():
    huge = Decimal("1e100")
    assert quantize_amount(huge, 18) == huge
    assert multiply_exact(Decimal("1e90"), Decimal("123.456")) == Decimal("123.456e90")
    # 29 digits, one more than the default context keeps
    assert multiply_exact(Decimal("12345678901234567890123456789"), Decimal("3")) == Decimal(
        "37037036703703703670370370367"
    )


def test_fits_decimals():
    assert fits_decimals(Decimal("0.000001"), 6)
    assert fits_decimals(Decimal("1500.000000"), 0)
    assert not fits_decimals(Decimal("0.0000001"), 6)
    assert not fits_decimals(Decimal("0.5"), 0)


def test_format_amount_is_plain():
    assert format_amount(Decimal("1500.000000")) == "1500"
    assert format_amount(Decimal("1E-7")) == "0.0000001"
    assert format_amount(Decimal("0")) == "0"
    assert format_amount(None) is None
