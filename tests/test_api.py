from datetime import datetime, timedelta, timezone

import pytest
from starlette.testclient import TestClient

from finditfast.api.app import app
from finditfast.reports.aggregator import ReportAggregator
from finditfast.storage.documents import FLAGGED_ITEMS, ITEMS, STORES, InMemoryDocumentStore
from finditfast.verification.engine import VerificationEngine

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
KM_PER_DEG = 111.19492664455873


def _item(item_id: str, *, verified: bool, days_ago: int = 1, reports: int = 0) -> dict:
    return {
        "id": item_id,
        "name": item_id,
        "store_id": "near",
        "position": {"x": 0, "y": 0},
        "verified": verified,
        "verified_at": (NOW - timedelta(days=days_ago)).isoformat() if verified else None,
        "report_count": reports,
        "created_at": NOW.isoformat(),
        "updated_at": NOW.isoformat(),
    }


@pytest.fixture
def store(monkeypatch):
    # Patch the cached store/services factories so API tests never touch the JSON file.
    import finditfast.api.routes as routes

    store = InMemoryDocumentStore(
        {
            STORES: {
                "far": {"id": "far", "name": "Far", "location": {"latitude": 5 / KM_PER_DEG, "longitude": 0}},
                "near": {"id": "near", "name": "Near", "location": {"latitude": 0.5 / KM_PER_DEG, "longitude": 0}},
                "nowhere": {"id": "nowhere", "name": "Nowhere"},
            },
            ITEMS: {
                "milk": _item("milk", verified=False),
                "old": _item("old", verified=True, days_ago=45),
                "disputed": _item("disputed", verified=True, reports=3),
            },
        }
    )
    services = (ReportAggregator(store, clock=lambda: NOW), VerificationEngine(store, clock=lambda: NOW))
    monkeypatch.setattr(routes, "_store", lambda: store)
    monkeypatch.setattr(routes, "_services", lambda: services)
    return store


def test_health():
    with TestClient(app) as c:
        resp = c.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_nearby_stores_ranked_with_formatted_distance(store):
    with TestClient(app) as c:
        resp = c.get("/api/stores/nearby", params={"lat": 0, "lon": 0})
    assert resp.status_code == 200
    data = resp.json()
    assert data["ranked"] is True
    assert [r["store"]["id"] for r in data["results"]] == ["near", "far", "nowhere"]
    assert data["results"][0]["formatted_distance"] == "500m away"
    assert data["results"][2]["distance_km"] is None


def test_nearby_stores_without_position_are_unranked(store):
    with TestClient(app) as c:
        resp = c.get("/api/stores/nearby")
    data = resp.json()
    assert data["ranked"] is False
    assert [r["store"]["id"] for r in data["results"]] == ["far", "near", "nowhere"]
    assert all(r["formatted_distance"] is None for r in data["results"])


def test_nearby_stores_rejects_invalid_coordinates(store):
    with TestClient(app) as c:
        resp = c.get("/api/stores/nearby", params={"lat": 91, "lon": 0})
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "VALIDATION_ERROR"


def test_report_flow_flags_item_after_three_missing_reports(store):
    payload = {"item_id": "milk", "store_id": "near", "type": "missing"}
    with TestClient(app) as c:
        ids = [c.post("/api/reports", json=payload).json()["id"] for _ in range(3)]
        stats = c.get("/api/items/milk/reports/stats").json()
        reports = c.get("/api/items/milk/reports").json()

    assert len(set(ids)) == 3
    assert stats["missing"] == 3
    assert stats["total"] == 3
    assert len(reports) == 3
    assert store.snapshot()[ITEMS]["milk"]["report_count"] == 3
    assert len(store.snapshot()[FLAGGED_ITEMS]) == 1


def test_report_submission_failure_is_503(store, monkeypatch):
    async def broken(collection, data, doc_id=None):
        raise ConnectionError("offline")

    monkeypatch.setattr(store, "create", broken)
    with TestClient(app) as c:
        resp = c.post("/api/reports", json={"item_id": "milk", "store_id": "near", "type": "found"})
    assert resp.status_code == 503
    assert resp.json()["detail"] == {
        "code": "REPORT_SUBMISSION_FAILED",
        "message": "Failed to submit report. Please try again.",
    }


def test_report_payload_is_validated(store):
    with TestClient(app) as c:
        resp = c.post("/api/reports", json={"item_id": "milk", "store_id": "near", "type": "stolen"})
    assert resp.status_code == 422


def test_verification_lifecycle_endpoints(store):
    with TestClient(app) as c:
        assert c.post("/api/items/milk/verify").status_code == 204
        verified = c.get("/api/items/milk/verification").json()
        assert c.post("/api/items/milk/unverify").status_code == 204
        unverified = c.get("/api/items/milk/verification").json()
        assert c.post("/api/items/old/refresh").status_code == 204
        refreshed = c.get("/api/items/old/verification").json()
        missing = c.post("/api/items/ghost/verify")

    assert verified["verified"] is True
    assert verified["state"] == "verified"
    assert unverified["verified"] is False
    assert unverified["verified_at"] == verified["verified_at"]
    assert unverified["state"] == "unverified"
    assert refreshed["state"] == "verified"
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "NOT_FOUND"


def test_create_verified_item_and_batch_verify(store):
    new_item = {"name": "Capers", "store_id": "near", "position": {"x": 3, "y": 4}}
    with TestClient(app) as c:
        created = c.post("/api/items/verified", json=new_item)
        batch = c.post("/api/items/verify-batch", json={"item_ids": ["milk", "ghost"]})

    assert created.status_code == 201
    doc = store.snapshot()[ITEMS][created.json()["id"]]
    assert doc["verified"] is True
    assert doc["report_count"] == 0
    assert batch.status_code == 200
    assert batch.json()["succeeded"] == ["milk"]
    assert list(batch.json()["failed"]) == ["ghost"]


def test_store_verification_views(store):
    with TestClient(app) as c:
        stats = c.get("/api/stores/near/verification/stats").json()
        review = c.get("/api/stores/near/verification/needs-review").json()
        expired = c.get("/api/stores/near/verification/expired").json()
        expired_lenient = c.get("/api/stores/near/verification/expired", params={"max_days": 60}).json()
        state = c.get("/api/items/disputed/verification").json()

    assert stats == {"total": 3, "verified": 2, "unverified": 1, "needs_review": 1}
    assert [i["id"] for i in review] == ["disputed"]
    assert [i["id"] for i in expired] == ["old"]
    assert expired_lenient == []
    assert state["state"] == "verified_needs_review"


def test_item_search_ranks_trusted_items_first(store):
    with TestClient(app) as c:
        resp = c.get("/api/items/search", params={"q": "d", "lat": 0, "lon": 0})
        empty = c.get("/api/items/search", params={"q": "zzz"})

    assert resp.status_code == 200
    hits = resp.json()
    assert [h["item"]["id"] for h in hits] == ["disputed"]
    assert hits[0]["store"]["id"] == "near"
    assert hits[0]["formatted_distance"] == "500m away"
    assert empty.json() == []


def test_recent_reports_endpoint(store):
    with TestClient(app) as c:
        c.post("/api/reports", json={"item_id": "milk", "store_id": "near", "type": "found"})
        c.post("/api/reports", json={"item_id": "old", "store_id": "near", "type": "moved"})
        recent = c.get("/api/reports/recent").json()
        capped = c.get("/api/reports/recent", params={"limit": 1}).json()

    assert {r["item_id"] for r in recent} == {"milk", "old"}
    assert len(capped) == 1


def test_nearby_stores_limit_applies_without_position(store):
    with TestClient(app) as c:
        resp = c.get("/api/stores/nearby", params={"limit": 1})
    assert [r["store"]["id"] for r in resp.json()["results"]] == ["far"]
