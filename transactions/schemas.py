from pydantic import BaseModel
from typing import Optional, Dict, Any


class TransactionToken(BaseModel):
    id: int
    symbol: str
    name: str
    logoUrl: Optional[str] = None


class TransactionOut(BaseModel):
    id: int
    type: str
    status: str
    fromToken: Optional[TransactionToken]
    toToken: Optional[TransactionToken]
    fromAmount: str
    toAmount: str
    price: str
    txHash: Optional[str]
    networkFee: str
    metadata: Dict[str, Any]
    createdAt: str
    updatedAt: str
    timestamp: int
