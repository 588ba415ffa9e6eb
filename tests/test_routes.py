"""API route tests using FastAPI's TestClient with the pipeline overridden."""

import pytest
from fastapi.testclient import TestClient
from sqlmodel import select

from metricsync.api.deps import get_pipeline
from metricsync.api.sync_routes import PERMISSION_WARNING
from metricsync.main import app
from metricsync.models.entity_models import AdAccount
from metricsync.models.job_models import SyncJob

from conftest import FakeFetcher

CRON_KEY = "test-cron-secret"


@pytest.fixture
def pipeline(hierarchy, make_pipeline):
    return make_pipeline(FakeFetcher())


@pytest.fixture
def client(pipeline):
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()


def _sync(client, **body):
    payload = {"user_id": "user-1", "ad_account_id": "act_1", "date_preset": "last_7_days"}
    payload.update(body)
    return client.post("/metrics/sync", json=payload)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestTriggerSync:
    def test_uses_stored_token_and_returns_job(self, client):
        response = _sync(client)

        assert response.status_code == 200
        data = response.json()
        assert data["job_id"]
        assert data["has_ad_permissions"] is True
        assert data["warning"] is None

    def test_missing_token(self, client):
        response = _sync(client, user_id="user-2")
        assert response.status_code == 400

    def test_unknown_account(self, client):
        response = _sync(client, ad_account_id="act_999")
        assert response.status_code == 404

    def test_warns_when_token_lacks_scopes(self, client, sessions):
        with sessions() as session:
            session.add(AdAccount(id="act_2", user_id="user-2", name="No scopes"))
            session.commit()

        response = _sync(client, user_id="user-2", ad_account_id="act_2", access_token="explicit")

        assert response.status_code == 200
        data = response.json()
        assert data["has_ad_permissions"] is False
        assert data["warning"] == PERMISSION_WARNING

    def test_rejects_unsupported_preset(self, client, sessions):
        response = _sync(client, date_preset="last_3d")

        assert response.status_code == 422
        with sessions() as session:
            assert session.exec(select(SyncJob)).all() == []

    def test_orchestrator_error_is_500(self, client, pipeline, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(pipeline.orchestrator, "sync_all_metrics", broken)
        response = _sync(client)

        assert response.status_code == 500
        assert "database is locked" in response.json()["detail"]


class TestSyncJobs:
    def test_poll_completed_job(self, client):
        job_id = _sync(client).json()["job_id"]

        response = client.get(f"/sync-jobs/{job_id}")

        assert response.status_code == 200
        job = response.json()["job"]
        assert job["status"] == "completed"
        assert job["details"]["campaigns_synced"] == 2
        assert job["details"]["permission_issues"] is False

    def test_unknown_job(self, client):
        assert client.get("/sync-jobs/nope").status_code == 404


class TestStoredMetrics:
    def test_series_for_entity(self, client):
        _sync(client)

        response = client.get("/metrics", params={"type": "campaign", "id": "c1", "days": 7})

        assert response.status_code == 200
        metrics = response.json()["metrics"]
        assert len(metrics) == 7
        assert metrics[0]["clicks"] == 50
        assert all(m["campaign_id"] == "c1" for m in metrics)

    def test_invalid_type(self, client):
        response = client.get("/metrics", params={"type": "account", "id": "act_1"})
        assert response.status_code == 400

    def test_summary(self, client):
        _sync(client)

        response = client.get("/metrics/summary", params={"type": "ad", "id": "a1", "days": 7})

        assert response.status_code == 200
        summary = response.json()["summary"]
        assert summary["total_impressions"] == 1000
        assert summary["total_clicks"] == 50
        assert summary["total_spend"] == "12.34"
        assert summary["total_conversions"] == 5
        assert summary["total_ctr"] == "5.00"
        assert summary["total_cpc"] == "0.25"


class TestCron:
    def test_rejects_missing_key(self, client):
        assert client.get("/cron/sync-metrics").status_code == 401

    def test_rejects_wrong_key(self, client):
        response = client.post(
            "/cron/sync-metrics", headers={"Authorization": "Bearer wrong"}
        )
        assert response.status_code == 401

    def test_bearer_key(self, client):
        response = client.post(
            "/cron/sync-metrics", headers={"Authorization": f"Bearer {CRON_KEY}"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total_users"] == 1
        assert data["total_ad_accounts_synced"] == 1

    def test_query_key(self, client):
        response = client.get("/cron/sync-metrics", params={"key": CRON_KEY})
        assert response.status_code == 200
