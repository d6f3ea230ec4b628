import time
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from core.config import Settings
from ledger.sql import SqlLedgerRepository
from main import create_app

WALLET = "0x9fB29AAc15b9A4B7F17c3385939b007540f4d791"
ETH, BTC, USDT = 1, 2, 3


def _wait_for_status(client, wallet, transaction_id, status, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        history = client.get(f"/api/transactions/{wallet}").json()
        match = next((t for t in history if t["id"] == transaction_id), None)
        if match and match["status"] == status:
            return match
        time.sleep(0.05)
    raise AssertionError(f"transaction {transaction_id} never reached {status}")


def _balance(client, wallet, symbol) -> Decimal:
    portfolio = client.get(f"/api/portfolio/{wallet}").json()
    asset = next(a for a in portfolio["assets"] if a["token"]["symbol"] == symbol)
    return Decimal(asset["balance"])


def test_health(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "version": "1.0.0"}


def test_tokens(client):
    tokens = client.get("/api/tokens").json()
    assert [t["symbol"] for t in tokens] == ["ETH", "BTC", "USDT", "SOL", "ADA"]
    assert tokens[2]["decimals"] == 6
    assert tokens[0]["contractAddress"] == "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"


def test_prices_one_entry_per_token(client):
    prices = client.get("/api/prices").json()

    assert [p["symbol"] for p in prices] == ["ETH", "BTC", "USDT", "SOL", "ADA"]
    eth = prices[0]
    assert eth["price"] == "3000"
    assert eth["priceChange24h"] == "1.23"
    assert eth["marketCap"] == "50000000"


def test_prices_fall_back_to_stored_quotes(client, feed):
    feed.fail_with = 502

    prices = client.get("/api/prices").json()

    assert prices[0]["price"] == "3245.67"
    assert prices[4]["price"] == "0.4523"


def test_portfolio_creates_user_with_valued_assets(client):
    response = client.get(f"/api/portfolio/{WALLET}")
    assert response.status_code == 200
    body = response.json()

    assert body["walletAddress"] == WALLET
    assert len(body["assets"]) == 5

    total = Decimal("0")
    for asset in body["assets"]:
        assert Decimal(asset["balance"]) > 0
        expected = (Decimal(asset["balance"]) * Decimal(asset["price"])).quantize(Decimal("0.01"), rounding="ROUND_DOWN")
        assert Decimal(asset["value"]) == expected
        total += expected
    assert Decimal(body["totalValue"]) == total

    # second visit is the same user with the same balances
    assert client.get(f"/api/portfolio/{WALLET}").json()["assets"] == body["assets"]


def test_history_for_unknown_wallet_is_404(client):
    response = client.get("/api/transactions/0xnobody")

    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": {
            "code": "USER_NOT_FOUND",
            "message": "User not found",
            "details": {"walletAddress": "0xnobody"},
        },
    }


def test_swap_settles_after_delay(client):
    eth_before = _balance(client, WALLET, "ETH")
    usdt_before = _balance(client, WALLET, "USDT")

    response = client.post("/api/swap", json={
        "fromTokenId": ETH,
        "toTokenId": USDT,
        "fromAmount": "0.05",
        "walletAddress": WALLET,
    })

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending"
    assert body["fromToken"] == {"id": ETH, "symbol": "ETH", "name": "Ethereum"}
    assert body["toAmount"] == "150"
    assert body["rate"] == "3000"

    settled = _wait_for_status(client, WALLET, body["transactionId"], "completed")
    assert settled["txHash"].startswith("0x") and len(settled["txHash"]) == 66
    assert settled["fromToken"]["symbol"] == "ETH"
    assert settled["metadata"]["priceImpact"] == "0.05"
    assert isinstance(settled["timestamp"], int)

    assert _balance(client, WALLET, "ETH") == eth_before - Decimal("0.05")
    assert _balance(client, WALLET, "USDT") == usdt_before + Decimal("150")


def test_trade_buy_settles(client):
    usdt_before = _balance(client, WALLET, "USDT")

    response = client.post("/api/trade", json={
        "tokenId": BTC,
        "baseTokenId": USDT,
        "amount": "0.01",
        "price": "45000",
        "type": "buy",
        "walletAddress": WALLET,
    })

    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "buy"
    assert body["total"] == "450"
    assert body["baseToken"]["symbol"] == "USDT"

    _wait_for_status(client, WALLET, body["transactionId"], "completed")
    assert _balance(client, WALLET, "USDT") == usdt_before - Decimal("450")


def test_swap_over_balance_is_rejected_without_record(client):
    client.get(f"/api/portfolio/{WALLET}")

    response = client.post("/api/swap", json={
        "fromTokenId": ETH,
        "toTokenId": USDT,
        "fromAmount": "1000",
        "walletAddress": WALLET,
    })

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "INSUFFICIENT_BALANCE"
    assert error["details"]["requested"] == "1000"
    assert client.get(f"/api/transactions/{WALLET}").json() == []


@pytest.mark.parametrize(
    "path, payload",
    [
        ("/api/swap", {"fromTokenId": USDT, "toTokenId": ETH, "fromAmount": "1e100", "walletAddress": WALLET}),
        ("/api/trade", {
            "tokenId": ETH,
            "baseTokenId": USDT,
            "amount": "1e90",
            "price": "100",
            "type": "buy",
            "walletAddress": WALLET,
        }),
        ("/api/trade", {
            "tokenId": ETH,
            "baseTokenId": USDT,
            "amount": "1",
            "price": "1e60",
            "type": "buy",
            "walletAddress": WALLET,
        }),
    ],
)
def test_absurd_amounts_are_rejected_without_record(client, path, payload):
    client.get(f"/api/portfolio/{WALLET}")

    response = client.post(path, json=payload)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_INPUT"
    assert client.get(f"/api/transactions/{WALLET}").json() == []


def test_swap_below_token_precision_is_rejected(client):
    client.get(f"/api/portfolio/{WALLET}")

    response = client.post("/api/swap", json={
        "fromTokenId": USDT,
        "toTokenId": ETH,
        "fromAmount": "0.0000001",
        "walletAddress": WALLET,
    })

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "INVALID_INPUT"
    assert error["details"] == {"fromAmount": "0.0000001", "decimals": 6}
    assert client.get(f"/api/transactions/{WALLET}").json() == []


@pytest.mark.parametrize(
    "payload",
    [
        {"fromTokenId": ETH, "toTokenId": USDT, "fromAmount": "-1", "walletAddress": WALLET},
        {"fromTokenId": ETH, "toTokenId": USDT, "fromAmount": "abc", "walletAddress": WALLET},
        {"toTokenId": USDT, "fromAmount": "1", "walletAddress": WALLET},
    ],
)
def test_swap_validation_errors(client, payload):
    response = client.post("/api/swap", json=payload)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "INVALID_INPUT"
    assert body["error"]["details"]["errors"]


def test_swap_needs_wallet(client):
    response = client.post("/api/swap", json={"fromTokenId": ETH, "toTokenId": USDT, "fromAmount": "1"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "WALLET_REQUIRED"


def test_trade_rejects_unknown_side(client):
    response = client.post("/api/trade", json={
        "tokenId": BTC,
        "baseTokenId": USDT,
        "amount": "1",
        "price": "1",
        "type": "short",
        "walletAddress": WALLET,
    })
    assert response.status_code == 400


def test_gas_price(client):
    body = client.get("/api/gas-price").json()

    assert 20 <= body["gasPrice"] <= 89
    assert body["unit"] == "Gwei"
    assert body["timestamp"]


def test_market_passthroughs(client):
    trending = client.get("/api/trending").json()
    assert trending[1]["id"] == "bitcoin"

    market = client.get("/api/market/global").json()
    assert market["marketCapChangePercentage24hUsd"] == -0.42

    chart = client.get("/api/coins/eth/chart", params={"days": "30"})
    assert chart.status_code == 200
    assert chart.json()["marketCaps"] == [[1700000000000, 3.6e11]]


def test_feed_rate_limit_surfaces_as_500(client, feed):
    feed.rate_limited = True

    response = client.get("/api/trending")
    assert response.status_code == 500
    assert response.json()["error"]["code"] == "UPSTREAM_RATE_LIMITED"

    sent = len(feed.requests)
    assert client.get("/api/market/global").status_code == 500
    assert len(feed.requests) == sent


def test_feed_failure_surfaces_as_500(client, feed):
    feed.fail_with = 503

    response = client.get("/api/coins/bitcoin")

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "UPSTREAM_ERROR"


def test_inbound_rate_limit(feed_transport):
    settings = Settings(_env_file=None, LOG_LEVEL="WARNING", API_RATE_LIMIT="2/minute")
    with TestClient(create_app(settings, feed_transport=feed_transport)) as client:
        assert client.get("/api/tokens").status_code == 200
        assert client.get("/api/tokens").status_code == 200

        response = client.get("/api/tokens")
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMITED"


def test_sql_backend_round_trip(feed_transport):
    settings = Settings(
        _env_file=None,
        LOG_LEVEL="WARNING",
        API_RATE_LIMIT_ENABLED=False,
        SETTLEMENT_DELAY_SECONDS=0.05,
        LEDGER_BACKEND="sql",
    )
    app = create_app(settings, feed_transport=feed_transport)
    assert isinstance(app.state.ledger, SqlLedgerRepository)

    with TestClient(app) as client:
        response = client.post("/api/swap", json={
            "fromTokenId": ETH,
            "toTokenId": USDT,
            "fromAmount": "0.01",
            "walletAddress": WALLET,
        })
        assert response.status_code == 200
        settled = _wait_for_status(client, WALLET, response.json()["transactionId"], "completed")
        assert settled["toAmount"] == "30"


def test_swap_without_running_settlement_is_503(test_settings, feed_transport):
    # no lifespan, so the settlement scheduler never starts
    client = TestClient(create_app(test_settings, feed_transport=feed_transport))

    response = client.post("/api/swap", json={
        "fromTokenId": ETH,
        "toTokenId": USDT,
        "fromAmount": "0.01",
        "walletAddress": WALLET,
    })

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "SETTLEMENT_UNAVAILABLE"
    [record] = client.get(f"/api/transactions/{WALLET}").json()
    assert record["status"] == "failed"
