"""Integration tests for /sync routes."""
from decimal import Decimal
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from finance.api.main import create_app
from finance.db.engine import get_session
from finance.models.ledger import Account, Category, Transaction
from finance.models.sync import PendingOfflineRecord, SyncSession

AUTH = {"Authorization": "Bearer token-ana"}


@pytest.fixture(name="client")
def client_fixture(engine, user):
    app = create_app(engine)

    def override_session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    with TestClient(app) as c:
        yield c


@pytest.fixture(name="ledger")
def ledger_fixture(test_session: Session, user):
    """Account 5 and category 2, as a client would have cached them."""
    account = Account(id=5, user_id=user.id, name="Checking", balance=Decimal("1000.00"))
    category = Category(id=2, user_id=user.id, name="Groceries")
    test_session.add(account)
    test_session.add(category)
    test_session.commit()
    return account, category


def _assert_nothing_written(session: Session):
    assert session.exec(select(SyncSession)).all() == []
    assert session.exec(select(PendingOfflineRecord)).all() == []
    assert session.exec(select(Transaction)).all() == []


def _offline_txn(client_id="abc", **overrides):
    data = {
        "account_id": 5,
        "category_id": 2,
        "amount": 100,
        "type": "expense",
        "date": "2024-01-15",
        "description": "Lunch",
    }
    data.update(overrides)
    return {"client_id": client_id, "data": data, "created_at": "2024-01-15T12:00:00Z"}


class TestAuth:
    def test_health_is_public(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_missing_token_is_401(self, client):
        resp = client.get("/sync/status")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_invalid_token_is_401(self, client):
        resp = client.get("/sync/status", headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 401


class TestSyncTransactions:
    def test_same_client_id_twice_creates_one_transaction(self, client, test_session, ledger):
        body = {"transactions": [_offline_txn()], "device_id": "dev1"}

        first = client.post("/sync/transactions", json=body, headers=AUTH)
        second = client.post("/sync/transactions", json=body, headers=AUTH)

        assert first.status_code == 200
        assert second.status_code == 200
        first_synced = first.json()["data"]["synced"]
        second_synced = second.json()["data"]["synced"]
        assert first_synced[0]["client_id"] == "abc"
        assert second_synced == first_synced

        rows = test_session.exec(select(Transaction)).all()
        assert len(rows) == 1
        assert (rows[0].account_id, rows[0].type, rows[0].amount) == (5, "expense", Decimal("100.00"))
        account = test_session.get(Account, 5)
        test_session.refresh(account)
        assert account.balance == Decimal("900.00")

    def test_conflict_is_a_200_with_details(self, client, ledger):
        body = {"transactions": [_offline_txn(account_id=77)], "device_id": "d1"}
        resp = client.post("/sync/transactions", json=body, headers=AUTH)

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["synced"] == []
        assert data["conflicts"][0]["conflict"]["type"] == "missing_account"
        assert data["results"][0]["status"] == "conflict"
        assert isinstance(data["session_id"], int)

    def test_invalid_payload_is_422(self, client, test_session, ledger):
        body = {"transactions": [_offline_txn("ok"), _offline_txn("bad", amount=-5)], "device_id": "d1"}
        assert client.post("/sync/transactions", json=body, headers=AUTH).status_code == 422
        _assert_nothing_written(test_session)

    def test_missing_device_id_is_422(self, client, test_session, ledger):
        body = {"transactions": [_offline_txn()]}
        assert client.post("/sync/transactions", json=body, headers=AUTH).status_code == 422
        _assert_nothing_written(test_session)

    def test_aborted_batch_is_500_with_session_id(self, client, ledger):
        body = {"transactions": [_offline_txn()], "device_id": "d1", "strict": True}
        with patch(
            "finance.sync.reconciler.TransactionReconciler._create_transaction",
            side_effect=RuntimeError("database is locked"),
        ):
            resp = client.post("/sync/transactions", json=body, headers=AUTH)

        assert resp.status_code == 500
        payload = resp.json()
        assert payload["success"] is False
        assert payload["error"] == "database is locked"
        assert isinstance(payload["session_id"], int)


class TestFullSync:
    def test_snapshot_then_delta(self, client, ledger):
        first = client.post("/sync/full", json={"device_id": "d1"}, headers=AUTH)
        assert first.status_code == 200
        data = first.json()["data"]
        assert [a["id"] for a in data["data"]["accounts"]] == [5]
        assert data["sync_timestamp"].endswith("Z")

        second = client.post(
            "/sync/full",
            json={"device_id": "d1", "last_sync": data["sync_timestamp"]},
            headers=AUTH,
        )
        assert second.json()["data"]["meta"]["total_items"] == 0

    def test_unknown_entity_kind_is_422(self, client, test_session):
        resp = client.post("/sync/full", json={"device_id": "d1", "include": ["pets"]}, headers=AUTH)
        assert resp.status_code == 422
        _assert_nothing_written(test_session)

    def test_bad_last_sync_is_422(self, client, test_session):
        resp = client.post("/sync/full", json={"device_id": "d1", "last_sync": "yesterday"}, headers=AUTH)
        assert resp.status_code == 422
        _assert_nothing_written(test_session)


class TestConflicts:
    def _make_conflict(self, client):
        client.post(
            "/sync/transactions",
            json={"transactions": [_offline_txn("a")], "device_id": "d1"},
            headers=AUTH,
        )
        client.post(
            "/sync/transactions",
            json={"transactions": [_offline_txn("b")], "device_id": "d1"},
            headers=AUTH,
        )
        conflicts = client.get("/sync/conflicts", headers=AUTH).json()["data"]
        assert conflicts["count"] == 1
        return conflicts["conflicts"][0]["id"]

    def test_resolve_use_server(self, client, ledger):
        conflict_id = self._make_conflict(client)
        resp = client.post(
            "/sync/resolve-conflicts",
            json={"resolutions": [{"action": "use_server", "conflict_id": conflict_id}]},
            headers=AUTH,
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["resolved"][0]["conflict_id"] == conflict_id
        assert data["failed"] == []
        assert client.get("/sync/conflicts", headers=AUTH).json()["data"]["count"] == 0

    def test_unknown_conflict_is_reported_failed(self, client, ledger):
        resp = client.post(
            "/sync/resolve-conflicts",
            json={"resolutions": [{"action": "use_client", "conflict_id": 404}]},
            headers=AUTH,
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["failed"][0]["status"] == "not_found"

    def test_merge_without_data_is_422(self, client, ledger):
        conflict_id = self._make_conflict(client)
        resp = client.post(
            "/sync/resolve-conflicts",
            json={"resolutions": [{"action": "merge", "conflict_id": conflict_id}]},
            headers=AUTH,
        )
        assert resp.status_code == 422


class TestStatusAndHousekeeping:
    def test_status(self, client, ledger):
        client.post(
            "/sync/transactions",
            json={"transactions": [_offline_txn()], "device_id": "d1"},
            headers=AUTH,
        )
        resp = client.get("/sync/status", headers={**AUTH, "X-Device-ID": "d1"})
        data = resp.json()["data"]
        assert data["is_synced"] is True
        assert data["device_id"] == "d1"
        assert data["last_sync"]["items_synced"] == 1

    def test_last_sync_before_first_sync(self, client):
        resp = client.get("/sync/last-sync", headers=AUTH)
        assert resp.json()["data"]["has_synced"] is False

    def test_statistics(self, client, ledger):
        client.post("/sync/full", json={"device_id": "d1"}, headers=AUTH)
        data = client.get("/sync/statistics", headers=AUTH).json()["data"]
        assert data["total_syncs"] == 1
        assert data["successful_syncs"] == 1

    def test_clear_requires_confirm(self, client):
        resp = client.request("DELETE", "/sync/clear", json={}, headers=AUTH)
        assert resp.status_code == 422
        resp = client.request("DELETE", "/sync/clear", json={"confirm": False}, headers=AUTH)
        assert resp.status_code == 422

    def test_clear(self, client, test_session, ledger):
        client.post(
            "/sync/transactions",
            json={"transactions": [_offline_txn()], "device_id": "d1"},
            headers=AUTH,
        )
        resp = client.request("DELETE", "/sync/clear", json={"confirm": True}, headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["data"]["deleted_records"] == 1
        assert len(test_session.exec(select(Transaction)).all()) == 1
