from pydantic import BaseModel
from typing import List, Optional


class PortfolioToken(BaseModel):
    id: int
    symbol: str
    name: str
    logoUrl: Optional[str]


class PortfolioAsset(BaseModel):
    id: int
    token: PortfolioToken
    balance: str
    value: str
    price: str
    priceChange24h: str


class PortfolioResponse(BaseModel):
    walletAddress: str
    totalValue: str
    assets: List[PortfolioAsset]
