from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from core.config import Settings
from core.dependencies import get_ledger, get_settings
from core.errors import ErrorCode, ErrorMessage, not_found
from ledger.domain import Token, Transaction, format_amount
from ledger.repository import LedgerRepository
from transactions.schemas import TransactionOut, TransactionToken

router = APIRouter(prefix="/api/transactions", tags=["Transactions"])


def _token(token: Optional[Token]) -> Optional[TransactionToken]:
    if token is None:
        return None
    return TransactionToken(id=token.id, symbol=token.symbol, name=token.name, logoUrl=token.logo_url)


def _enrich(t: Transaction, tokens: dict[int, Token]) -> TransactionOut:
    return TransactionOut(
        id=t.id,
        type=t.type.value,
        status=t.status.value,
        fromToken=_token(tokens.get(t.from_token_id)),
        toToken=_token(tokens.get(t.to_token_id)),
        fromAmount=format_amount(t.from_amount),
        toAmount=format_amount(t.to_amount),
        price=format_amount(t.price),
        txHash=t.tx_hash,
        networkFee=format_amount(t.network_fee),
        metadata=t.metadata,
        createdAt=t.created_at.isoformat(),
        updatedAt=t.updated_at.isoformat(),
        timestamp=int(t.created_at.timestamp() * 1000),
    )


@router.get("/{wallet_address}", response_model=List[TransactionOut])
async def transaction_history(
    wallet_address: str,
    limit: Optional[int] = Query(None, ge=1, le=100),
    ledger: LedgerRepository = Depends(get_ledger),
    settings: Settings = Depends(get_settings),
):
    user = await ledger.get_user_by_wallet(wallet_address.strip())
    if not user:
        raise not_found(ErrorCode.USER_NOT_FOUND, ErrorMessage.USER_NOT_FOUND, {"walletAddress": wallet_address})

    txns = await ledger.list_user_transactions(user.id, limit=limit or settings.TRANSACTION_HISTORY_LIMIT)
    tokens = {token.id: token for token in await ledger.list_tokens()}

    return [_enrich(t, tokens) for t in txns]
