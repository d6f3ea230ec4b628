import random
from decimal import Decimal

from ledger.domain import NewToken, Token

DEFAULT_TOKENS = [
    NewToken(
        symbol="ETH",
        name="Ethereum",
        logo_url="https://cryptologos.cc/logos/ethereum-eth-logo.svg",
        decimals=18,
        contract_address="0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE",
        network="ethereum",
    ),
    NewToken(
        symbol="BTC",
        name="Bitcoin",
        logo_url="https://cryptologos.cc/logos/bitcoin-btc-logo.svg",
        decimals=8,
        contract_address="0x",
        network="bitcoin",
    ),
    NewToken(
        symbol="USDT",
        name="Tether",
        logo_url="https://cryptologos.cc/logos/tether-usdt-logo.svg",
        decimals=6,
        contract_address="0xdAC17F958D2ee523a2206206994597C13D831ec7",
        network="ethereum",
    ),
    NewToken(
        symbol="SOL",
        name="Solana",
        logo_url="https://cryptologos.cc/logos/solana-sol-logo.svg",
        decimals=9,
        contract_address="0x",
        network="solana",
    ),
    NewToken(
        symbol="ADA",
        name="Cardano",
        logo_url="https://cryptologos.cc/logos/cardano-ada-logo.svg",
        decimals=6,
        contract_address="0x",
        network="cardano",
    ),
]

# symbol -> (price, 24h change %, 24h volume)
DEFAULT_PRICES = {
    "ETH": ("3245.67", "2.45", "1000000000"),
    "BTC": ("44782.09", "1.87", "2500000000"),
    "USDT": ("1.00", "0.01", "5000000000"),
    "SOL": ("98.34", "-0.65", "750000000"),
    "ADA": ("0.4523", "3.12", "300000000"),
}

STABLECOINS = {"USDT", "USDC", "DAI", "BUSD"}


def default_quote_fields(symbol: str) -> dict | None:
    row = DEFAULT_PRICES.get(symbol)
    if row is None:
        return None
    price, change, volume = row
    return {
        "price": Decimal(price),
        "price_change_24h": Decimal(change),
        "volume_24h": Decimal(volume),
    }


def demo_username(rng: random.Random) -> str:
    return f"user_{rng.randrange(10000)}"


def placeholder_balance(token: Token, rng: random.Random) -> Decimal:
    """Random demo holding; stablecoins get dollar-sized amounts."""
    if token.symbol in STABLECOINS:
        return Decimal(f"{rng.uniform(1000, 6000):.2f}")

    places = min(token.decimals, 8 if token.symbol == "BTC" else 4)
    return Decimal(f"{rng.uniform(0.1, 5.1):.{places}f}")


def demo_balances(tokens: list[Token], rng: random.Random) -> dict[int, Decimal]:
    return {token.id: placeholder_balance(token, rng) for token in tokens}
