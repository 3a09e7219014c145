"""Integration tests for /sync routes."""
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from replisync.api.main import create_app
from replisync.models.change_log import ChangeAction
from replisync.sync.orchestrator import SyncOrchestrator
from replisync.sync.pull import PullEngine
from replisync.sync.push import PushEngine
from replisync.sync.probe import ConnectivityProbe
from replisync.sync.service import get_sync_service


@pytest.fixture(name="service")
def service_fixture(engine, registry, change_log, cursors, mock_client):
    return SyncOrchestrator(
        engine=engine,
        registry=registry,
        probe=ConnectivityProbe([]),
        pull=PullEngine(mock_client, engine, cursors),
        push=PushEngine(mock_client, engine, change_log),
        change_log=change_log,
        cursors=cursors,
    )


@pytest.fixture(name="client")
def client_fixture(engine, service):
    app = create_app()
    app.dependency_overrides[get_sync_service] = lambda: service
    with patch("replisync.api.main.get_engine", return_value=engine):
        with TestClient(app) as c:
            yield c


class TestSyncRoutes:
    def test_trigger_returns_200(self, client):
        # Patch _do_sync so the background task doesn't reach a real master
        with patch("replisync.api.routes.sync._do_sync", new=AsyncMock()) as do_sync:
            resp = client.post("/sync/trigger")
        assert resp.status_code == 200
        assert "started" in resp.json()["message"].lower()
        do_sync.assert_awaited_once()

    def test_status_lists_entities(self, client, cursors):
        cursors.set("customers", datetime(2025, 8, 1, 12, 0, 0))

        resp = client.get("/sync/status")

        assert resp.status_code == 200
        body = resp.json()
        assert set(body["entities"]) == {"customers", "products", "settings"}
        assert body["entities"]["customers"]["last_sync"] == "2025-08-01 12:00:00"
        assert body["change_log"]["total"] == 0

    def test_stats(self, client, change_log):
        change_log.record_change("customers", 1, ChangeAction.CREATE, {"id": 1})
        resp = client.get("/sync/stats")
        assert resp.status_code == 200
        assert resp.json()["pending"] == 1

    def test_logs_filtered_by_status(self, client, change_log):
        failed = change_log.record_change("customers", 1, ChangeAction.CREATE, {"id": 1})
        change_log.record_change("customers", 2, ChangeAction.UPDATE, {"id": 2})
        change_log.mark_failed([failed.id], "Server responded with HTTP 500")

        resp = client.get("/sync/logs", params={"status": "failed"})

        assert resp.status_code == 200
        [entry] = resp.json()
        assert entry["entity_id"] == "1"
        assert entry["action"] == "create"
        assert entry["status"] == "failed"
        assert entry["error_message"] == "Server responded with HTTP 500"

    def test_logs_rejects_unknown_status(self, client):
        resp = client.get("/sync/logs", params={"status": "exploded"})
        assert resp.status_code == 422

    def test_cleanup(self, client):
        resp = client.post("/sync/cleanup", json={"days": 7})
        assert resp.status_code == 200
        assert resp.json() == {"deleted": 0}

    def test_reset_one_entity(self, client, cursors):
        cursors.set("customers", datetime(2025, 8, 1))
        cursors.set("products", datetime(2025, 8, 1))

        resp = client.post("/sync/reset", json={"entity_type": "customers"})

        assert resp.json() == {"reset": 1}
        assert list(cursors.all()) == ["products"]

    def test_retry_requeues_failed(self, client, change_log):
        entry = change_log.record_change("customers", 1, ChangeAction.CREATE, {"id": 1})
        change_log.mark_failed([entry.id], "down")

        resp = client.post("/sync/retry", json={})

        assert resp.json() == {"requeued": 1}
        assert change_log.stats()["pending"] == 1
