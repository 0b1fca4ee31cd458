import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from cardsync.app import api
from cardsync.app.config import SyncSettings
from cardsync.app.dependencies import set_db_path
from cardsync.infrastructure.db import get_connection, iso_utc_ago
from cardsync.infrastructure.db.repositories import SyncStatusRepository
from cardsync.services.sync_service import SyncService
from fakes import feed_route, routed_fetcher_factory


@pytest.fixture
def client(db_path):
    service = SyncService(
        db_path=db_path,
        settings=SyncSettings(),
        fetcher_factory=routed_fetcher_factory(feed_route({"100": 3, "200": 2})),
    )
    api.set_sync_service(service)
    set_db_path(str(db_path))
    with TestClient(api.app) as test_client:
        yield test_client
    api.set_sync_service(None)
    set_db_path(None)


def test_root_lists_endpoints(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["endpoints"]["sync"] == "/sync"


def test_sync_returns_summary_and_per_target_results(client):
    response = client.post(
        "/sync", json={"source": "tcgcsv", "categoryId": "3", "groupIds": ["100", "200"]}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["summary"]["upserted"] == 5
    assert "rateRPS" in body["summary"]
    assert "rateUPS" in body["summary"]
    per_target = {t["targetId"]: t for t in body["perTarget"]}
    assert per_target["100"]["state"] == "completed"
    assert per_target["100"]["stopReason"] == "partial_page"


def test_configuration_errors_are_bad_requests(client):
    response = client.post("/sync", json={"source": "tcgcsv"})

    assert response.status_code == 400
    assert response.json()["success"] is False

    response = client.post("/sync", json={"source": "justtcg", "categoryId": "pokemon"})
    assert response.status_code == 400


def test_unknown_fields_are_rejected(client):
    response = client.post("/sync", json={"source": "tcgcsv", "categoryId": "3", "bogus": 1})

    assert response.status_code == 422


def test_unknown_targets_are_not_found(client, db_path):
    api.set_sync_service(
        SyncService(
            db_path=db_path,
            settings=SyncSettings(),
            fetcher_factory=routed_fetcher_factory(feed_route({}, category="77")),
        )
    )

    response = client.post("/sync", json={"source": "tcgcsv", "categoryId": "77"})

    assert response.status_code == 404
    assert "No targets found" in response.json()["error"]


def test_background_sync_is_accepted(client):
    response = client.post(
        "/sync",
        json={"source": "tcgcsv", "categoryId": "3", "groupIds": ["100"], "background": True},
    )

    assert response.status_code == 202
    body = response.json()
    assert body["started"] is True
    operation_id = body["operationId"]

    rows = []
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        rows = client.get("/sync/status", params={"source": "tcgcsv"}).json()
        if rows and rows[0]["state"] == "completed":
            break
        time.sleep(0.05)
    assert rows[0]["targetId"] == "100"
    assert rows[0]["state"] == "completed"
    assert rows[0]["operationId"] == operation_id


def test_control_signal_round_trip(client):
    response = client.post("/sync/control", json={"operationId": "op-1", "createdBy": "ops"})

    assert response.status_code == 200
    assert response.json()["shouldCancel"] is True

    response = client.delete("/sync/control", params={"operationId": "op-1"})
    assert response.json() == {"success": True, "removed": 1}


def test_cancel_signal_stops_sync(client):
    client.post("/sync/control", json={"operationId": "*"})

    body = client.post(
        "/sync", json={"source": "tcgcsv", "categoryId": "3", "groupIds": ["100"]}
    ).json()

    assert body["stopReason"] == "cancelled"
    assert body["perTarget"][0]["state"] == "cancelled"
    assert client.get("/sync/status").json() == []


def test_status_filters_and_validation(client):
    client.post("/sync", json={"source": "tcgcsv", "categoryId": "3", "groupIds": ["100"]})

    assert len(client.get("/sync/status", params={"state": "completed"}).json()) == 1
    assert client.get("/sync/status", params={"state": "error"}).json() == []
    assert client.get("/sync/status", params={"state": "bogus"}).status_code == 400


def test_stuck_rows_and_manual_reset(client, db_path):
    with get_connection(db_path) as conn:
        SyncStatusRepository(conn).mark_syncing("tcgcsv", "300", "op-old")
        conn.execute(
            "UPDATE sync_status SET updated_at = ? WHERE target_id = '300'",
            (iso_utc_ago(timedelta(hours=2)),),
        )
        conn.commit()

    stuck = client.get("/sync/status/stuck").json()
    assert [row["targetId"] for row in stuck] == ["300"]
    assert client.get("/sync/status/stuck", params={"minutes": 600}).json() == []

    response = client.post(
        "/sync/status/reset", json={"source": "tcgcsv", "targetId": "300", "state": "idle"}
    )
    assert response.status_code == 200
    assert response.json()["state"] == "idle"

    response = client.post(
        "/sync/status/reset", json={"source": "tcgcsv", "targetId": "300", "state": "completed"}
    )
    assert response.status_code == 400


def test_discover_then_list_targets(client):
    response = client.post("/targets/discover", params={"categoryId": "3"})

    assert response.status_code == 200
    assert [t["externalId"] for t in response.json()] == ["100", "200"]

    listed = client.get("/targets", params={"categoryId": "3", "name": "group 2"}).json()
    assert [t["externalId"] for t in listed] == ["200"]


def test_metrics_endpoint_exposes_counters(client):
    client.get("/")
    client.post("/sync", json={"source": "tcgcsv", "categoryId": "3", "groupIds": ["100"]})

    text = client.get("/metrics").text

    assert "# TYPE api_requests_total counter" in text
    assert 'sync_targets_total{source="tcgcsv",state="completed"} 1.0' in text
    assert "fetch_attempts_total" in text
