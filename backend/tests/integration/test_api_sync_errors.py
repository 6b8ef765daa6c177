"""Integration tests for the sync error log endpoints."""

from models import SyncErrorType
from services.sync_error_service import SyncErrorService


def test_list_and_filter(client, db, account, second_account):
    SyncErrorService.record(db, SyncErrorType.NETWORK_ERROR, "timeout", account_id=account.id)
    resolved = SyncErrorService.record(db, SyncErrorType.NETWORK_ERROR, "old", account_id=second_account.id)
    SyncErrorService.mark_resolved(db, resolved, "retried")
    db.commit()

    assert len(client.get("/api/sync-errors").json()) == 1
    assert len(client.get("/api/sync-errors", params={"include_resolved": True}).json()) == 2
    scoped = client.get("/api/sync-errors", params={"account_id": second_account.id, "include_resolved": True})
    assert [e["resolution"] for e in scoped.json()] == ["retried"]


def test_recover_holdings_error(client, db, account):
    client.post(
        f"/api/accounts/{account.id}/transactions",
        json={"type": "buy", "symbol": "AAPL", "quantity": "3", "price_per_unit": "5",
              "transaction_date": "2024-01-02"},
    )
    error = SyncErrorService.record(
        db, SyncErrorType.HOLDINGS_RECALCULATION_FAILED, "crashed", account_id=account.id
    )
    db.commit()

    response = client.post(f"/api/sync-errors/{error.id}/recover")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["attempts"] == 1
    assert client.get("/api/sync-errors").json() == []


def test_recover_unrecoverable(client, db, account):
    error = SyncErrorService.record(db, SyncErrorType.INSUFFICIENT_SHARES, "oversold", account_id=account.id)
    db.commit()

    body = client.post(f"/api/sync-errors/{error.id}/recover").json()
    assert body["success"] is False
    assert len(client.get("/api/sync-errors").json()) == 1


def test_recover_missing(client):
    assert client.post("/api/sync-errors/nope/recover").status_code == 404
