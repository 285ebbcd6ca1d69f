import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

import main
from config import get_settings
from database import Base
from models import RecomputeTrigger
from services import ensure_core_tables
from store import SqlDocumentStore, StoreError


@pytest.fixture()
def api():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = Session(engine)
    store = SqlDocumentStore(session)
    ensure_core_tables(store, get_settings())
    events: list = []

    def override_store():
        yield store

    main.app.dependency_overrides[main.get_store] = override_store
    main.app.dependency_overrides[main.get_notify] = lambda: (
        lambda user, trigger: events.append((user, trigger))
    )
    # no context manager: startup would launch the scheduler
    client = TestClient(main.app)
    yield client, store, events
    main.app.dependency_overrides.clear()
    session.close()


def test_tag_crud_round_trip(api) -> None:
    client, _, events = api

    created = client.post("/api/tags", json={"userId": "u1", "name": "Rent"})
    assert created.status_code == 200
    tag = created.json()
    assert tag["name"] == "Rent"
    assert tag["userId"] == "u1"
    assert tag["color"]

    duplicate = client.post("/api/tags", json={"userId": "u1", "name": "rent"})
    assert duplicate.status_code == 409

    renamed = client.put(f"/api/tags/{tag['id']}?userId=u1", json={"name": "Housing"})
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Housing"
    assert events == [("u1", RecomputeTrigger.tag_renamed)]

    listed = client.get("/api/tags", params={"userId": "u1"}).json()
    assert [row["name"] for row in listed] == ["Housing"]

    assert client.delete(f"/api/tags/{tag['id']}?userId=u2").status_code == 404
    deleted = client.delete(f"/api/tags/{tag['id']}?userId=u1")
    assert deleted.json() == {"success": True, "transactionsUpdated": 0}


def test_bank_collisions_conflict(api) -> None:
    client, _, _ = api
    created = client.post("/api/banks", json={"bankName": "HDFC Bank"})
    assert created.json()["tableName"] == "brmh-hdfc-bank"
    assert client.post("/api/banks", json={"bankName": "hdfc-bank"}).status_code == 409
    assert [bank["bankName"] for bank in client.get("/api/banks").json()] == ["HDFC Bank"]


def test_transaction_update_then_recompute(api) -> None:
    client, store, events = api
    table = client.post("/api/banks", json={"bankName": "HDFC"}).json()["tableName"]
    tag = client.post("/api/tags", json={"userId": "u1", "name": "Rent"}).json()
    store.put(table, {"id": "tx-1", "userId": "u1", "AmountRaw": 2000, "Dr./Cr.": "CR"})

    updated = client.post(
        "/api/transactions/update",
        json={"transactionId": "tx-1", "bankName": "HDFC", "tags": [tag["id"]]},
    )
    assert updated.json() == {"success": True}
    assert events == [("u1", RecomputeTrigger.transaction_updated)]

    missing = client.post(
        "/api/transactions/update",
        json={"transactionId": "nope", "bankName": "HDFC", "tags": []},
    )
    assert missing.status_code == 404

    job = client.post("/api/reports/tags-summary", json={"userId": "u1"}).json()
    assert job["status"] == "succeeded"
    assert job["transactionsAggregated"] == 1

    summary = client.get("/api/reports/tags-summary", params={"userId": "u1"}).json()
    assert summary["tags"][0]["tagName"] == "Rent"
    assert summary["tags"][0]["credit"] == 2000.0
    assert summary["tags"][0]["bankBreakdown"]["HDFC"]["transactionCount"] == 1

    jobs = client.get("/api/jobs", params={"userId": "u1"}).json()
    assert [row["id"] for row in jobs] == [job["id"]]
    assert client.get(f"/api/jobs/{job['id']}").json()["status"] == "succeeded"
    assert client.get("/api/jobs/unknown").status_code == 404


def test_bulk_update_reports_partial_failure(api) -> None:
    client, store, events = api
    table = client.post("/api/banks", json={"bankName": "SBI"}).json()["tableName"]
    store.put(table, {"id": "s1", "userId": "u1", "Credit": 10})

    response = client.post(
        "/api/transactions/bulk-update",
        json={
            "updates": [
                {"transactionId": "s1", "bankName": "SBI", "tags": ["t1"]},
                {"transactionId": "s2", "bankName": "SBI", "tags": ["t1"]},
            ]
        },
    )

    body = response.json()
    assert body["success"] is False
    assert (body["updated"], body["failed"]) == (1, 1)
    assert events == [("u1", RecomputeTrigger.transactions_bulk_updated)]


def test_invalid_payloads_are_rejected(api) -> None:
    client, _, _ = api
    no_changes = client.post(
        "/api/transactions/update", json={"transactionId": "tx-1", "bankName": "HDFC"}
    )
    assert no_changes.status_code == 422
    assert client.post("/api/transactions/bulk-update", json={"updates": []}).status_code == 422
    assert client.get("/api/tags").status_code == 422


def test_missing_summary_and_background_queue(api) -> None:
    client, _, events = api
    assert client.get("/api/reports/tags-summary", params={"userId": "u9"}).json() is None
    assert client.get("/api/debug/tags-summary-check", params={"userId": "u9"}).status_code == 404

    queued = client.post("/api/reports/tags-summary/background", json={"userId": "u9"})
    assert queued.status_code == 202
    assert events == [("u9", RecomputeTrigger.manual)]


def test_store_failures_become_bad_gateway(api) -> None:
    client, _, _ = api

    class DownStore(SqlDocumentStore):
        def __init__(self) -> None:
            pass

        def scan(self, table, *, filters=None, limit=None, cursor=None):
            raise StoreError("connection reset")

    def broken_store():
        yield DownStore()

    main.app.dependency_overrides[main.get_store] = broken_store
    response = client.get("/api/tags", params={"userId": "u1"})
    assert response.status_code == 502
    assert response.json() == {"detail": "Storage request failed"}
