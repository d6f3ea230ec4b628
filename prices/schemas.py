from pydantic import BaseModel
from typing import Optional, List, Any


class TokenOut(BaseModel):
    id: int
    symbol: str
    name: str
    logoUrl: Optional[str]
    decimals: int
    contractAddress: Optional[str]
    network: str


class TokenPriceOut(BaseModel):
    id: int
    symbol: str
    name: str
    logoUrl: Optional[str]
    price: str
    priceChange24h: str
    volume24h: str
    marketCap: str


class TrendingCoin(BaseModel):
    id: str
    name: str
    symbol: str
    logoUrl: Optional[str] = None
    marketCapRank: Optional[int] = None


class GlobalMarketOut(BaseModel):
    totalMarketCap: float
    totalVolume24h: float
    marketCapPercentage: dict[str, float]
    marketCapChangePercentage24hUsd: Optional[float] = None


class MarketChartOut(BaseModel):
    prices: List[List[float]]
    marketCaps: List[List[float]]
    totalVolumes: List[List[float]]


CoinDetailOut = dict[str, Any]
