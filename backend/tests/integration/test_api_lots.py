"""Integration tests for lot endpoints."""

from decimal import Decimal


def _trade(client, account_id, kind, quantity, price, tx_date, symbol="AAPL"):
    return client.post(
        f"/api/accounts/{account_id}/transactions",
        json={"type": kind, "symbol": symbol, "quantity": quantity, "price_per_unit": price,
              "transaction_date": tx_date},
    )


def test_lots_with_disposals(client, account):
    _trade(client, account.id, "buy", "10", "5", "2024-01-02")
    _trade(client, account.id, "buy", "10", "8", "2024-01-03")
    _trade(client, account.id, "sell", "12", "9", "2024-01-04")

    lots = client.get(f"/api/accounts/{account.id}/lots").json()

    assert [lot["status"] for lot in lots] == ["closed", "open"]
    assert Decimal(lots[1]["quantity_remaining"]) == Decimal("8")
    assert Decimal(lots[0]["disposals"][0]["realized_gain"]) == Decimal("40")

    open_only = client.get(f"/api/accounts/{account.id}/lots", params={"include_closed": False}).json()
    assert len(open_only) == 1


def test_summary_per_symbol(client, account):
    _trade(client, account.id, "buy", "10", "5", "2024-01-02")
    _trade(client, account.id, "buy", "2", "100", "2024-01-02", symbol="MSFT")

    summaries = client.get(f"/api/accounts/{account.id}/lots/summary").json()
    assert [s["symbol"] for s in summaries] == ["AAPL", "MSFT"]

    aapl = client.get(
        f"/api/accounts/{account.id}/lots/summary", params={"symbol": "aapl", "market_price": "7"}
    ).json()[0]
    assert Decimal(aapl["fifo_cost_basis"]) == Decimal("50")
    assert Decimal(aapl["unrealized_gain"]) == Decimal("20")


def test_split_adjusts_lots(client, account):
    _trade(client, account.id, "buy", "10", "8", "2024-01-02")
    client.post(
        f"/api/accounts/{account.id}/transactions",
        json={"type": "split", "symbol": "AAPL", "ratio": "2", "transaction_date": "2024-02-01"},
    )
    lot = client.get(f"/api/accounts/{account.id}/lots").json()[0]
    assert Decimal(lot["quantity_remaining"]) == Decimal("20")
    assert Decimal(lot["cost_per_share"]) == Decimal("4")


def test_missing_account(client):
    assert client.get("/api/accounts/nope/lots").status_code == 404
