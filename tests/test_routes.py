"""Tests for the HTTP surface: admin routes, job submission and auth."""

from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from crawlgate.config import Settings
from crawlgate.context import SchedulerContext
from crawlgate.main import create_app

TENANT = {"X-Tenant-ID": "pro-co"}


@pytest.fixture
def secured_client(settings: Settings) -> Generator[TestClient]:
    secured = settings.model_copy(update={"admin_token": "s3cret"})

    async def factory(app_settings: Settings) -> SchedulerContext:
        return await SchedulerContext.create(app_settings, memory_sampler=lambda: 0)

    with TestClient(create_app(secured, context_factory=factory)) as test_client:
        yield test_client


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


# ----------------------------------------------------------------------
# Queues
# ----------------------------------------------------------------------


def test_get_all_queue_stats(client: TestClient) -> None:
    resp = client.get("/v1/admin/queues")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    names = [stats["queueName"] for stats in body["data"]]
    assert names == ["web-scraping", "content-analysis"]
    assert body["data"][0]["total"] == 0


def test_get_stats_for_unknown_queue(client: TestClient) -> None:
    resp = client.get("/v1/admin/queues", params={"queueName": "nope"})
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "UNKNOWN_QUEUE"


def test_control_requires_queue_name(client: TestClient) -> None:
    resp = client.post("/v1/admin/queues/control", json={"action": "pause"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "QUEUE_NAME_REQUIRED"

    resp = client.post(
        "/v1/admin/queues/control", json={"action": "cancel_job", "queueName": "web-scraping"}
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "JOB_ID_REQUIRED"


def test_unknown_control_action_is_rejected(client: TestClient) -> None:
    resp = client.post(
        "/v1/admin/queues/control", json={"action": "explode", "queueName": "web-scraping"}
    )
    assert resp.status_code == 422


def test_pause_blocks_submissions_until_resume(client: TestClient) -> None:
    resp = client.post(
        "/v1/admin/queues/control", json={"action": "pause", "queueName": "content-analysis"}
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["message"] == "Queue content-analysis paused"

    resp = client.post("/v1/jobs", json={"queueName": "content-analysis"}, headers=TENANT)
    assert resp.status_code == 503
    assert resp.json()["error"]["details"]["reason"] == "QueueInactive"

    client.post(
        "/v1/admin/queues/control", json={"action": "resume", "queueName": "content-analysis"}
    )
    resp = client.post("/v1/jobs", json={"queueName": "content-analysis"}, headers=TENANT)
    assert resp.status_code == 201

    audit = client.get("/v1/admin/queues/audit", params={"queueName": "content-analysis"})
    actions = [entry["action"] for entry in audit.json()["data"]]
    assert sorted(actions) == ["pause", "resume"]


def test_get_stats_and_cancel_job_actions(client: TestClient) -> None:
    submitted = client.post(
        "/v1/jobs", json={"queueName": "web-scraping", "payload": {"name": "x"}}, headers=TENANT
    ).json()

    resp = client.post(
        "/v1/admin/queues/control", json={"action": "get_stats", "queueName": "web-scraping"}
    )
    assert resp.json()["data"]["queueName"] == "web-scraping"

    resp = client.post(
        "/v1/admin/queues/control",
        json={"action": "cancel_job", "queueName": "web-scraping", "jobId": submitted["jobId"]},
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["cancelled"] is True

    job = client.get(f"/v1/jobs/web-scraping/{submitted['jobId']}", headers=TENANT).json()
    assert job["state"] == "cancelled"


def test_clear_queue_action(client: TestClient) -> None:
    client.post("/v1/admin/queues/control", json={"action": "pause", "queueName": "web-scraping"})
    resp = client.post(
        "/v1/admin/queues/control", json={"action": "clear", "queueName": "web-scraping"}
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["cleared"] == 0


# ----------------------------------------------------------------------
# Config
# ----------------------------------------------------------------------


def test_update_config_applies_and_persists(client: TestClient) -> None:
    resp = client.put(
        "/v1/admin/queues/config",
        json={"queueName": "web-scraping", "config": {"maxWorkers": 4, "retryAttempts": 1}},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["maxWorkers"] == 4
    assert data["retryAttempts"] == 1

    resp = client.get("/v1/admin/queues/config", params={"queueName": "web-scraping"})
    assert resp.json()["data"]["maxWorkers"] == 4
    assert client.get("/v1/admin/queues", params={"queueName": "web-scraping"}).json()["data"][
        "capacity"
    ] == 4


def test_update_config_rejects_unknown_fields(client: TestClient) -> None:
    resp = client.put(
        "/v1/admin/queues/config",
        json={"queueName": "web-scraping", "config": {"maxWorkers": 2, "turbo": True}},
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    resp = client.get("/v1/admin/queues/config", params={"queueName": "web-scraping"})
    assert resp.json()["data"]["maxWorkers"] == 1


def test_update_config_rejects_description(client: TestClient) -> None:
    resp = client.put(
        "/v1/admin/queues/config",
        json={"queueName": "web-scraping", "config": {"description": "x"}},
    )
    assert resp.status_code == 422

    resp = client.get("/v1/admin/queues/config", params={"queueName": "web-scraping"})
    assert resp.json()["data"]["description"] != "x"


def test_update_config_rejects_empty_update(client: TestClient) -> None:
    resp = client.put(
        "/v1/admin/queues/config", json={"queueName": "web-scraping", "config": {}}
    )
    assert resp.status_code == 400


def test_get_all_configs(client: TestClient) -> None:
    data = client.get("/v1/admin/queues/config").json()["data"]
    assert {config["queueName"] for config in data} == {"web-scraping", "content-analysis"}


# ----------------------------------------------------------------------
# Performance, memory, tenants, metrics
# ----------------------------------------------------------------------


def test_performance_report(client: TestClient) -> None:
    resp = client.get("/v1/admin/queues/performance")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["systemHealth"]["status"] == "healthy"
    assert data["performanceMetrics"]["totalJobs"] == 0
    assert len(data["capacityAnalysis"]["queues"]) == 2


def test_memory_overview(client: TestClient) -> None:
    resp = client.get("/v1/admin/memory")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["memoryStats"]["pressure"] == "normal"
    assert len(data["queueMemoryBreakdown"]) == 2
    assert data["monitoring"]["active"] is False


def test_memory_actions(client: TestClient, memory_sample: list[int]) -> None:
    memory_sample[0] = 900
    resp = client.post("/v1/admin/memory", json={"action": "check_memory"})
    assert resp.status_code == 200
    assert resp.json()["data"]["actionTaken"] is True

    resp = client.post("/v1/jobs", json={"queueName": "web-scraping"}, headers=TENANT)
    assert resp.status_code == 503

    memory_sample[0] = 100
    resp = client.post("/v1/admin/memory", json={"action": "check_memory"})
    assert resp.json()["data"]["actionTaken"] is False
    assert resp.json()["data"]["throttledQueues"] == []

    resp = client.post("/v1/admin/memory", json={"action": "start_monitoring", "intervalMs": 5000})
    assert resp.json()["data"]["started"] is True
    resp = client.post("/v1/admin/memory", json={"action": "stop_monitoring"})
    assert resp.json()["data"]["stopped"] is True

    resp = client.post("/v1/admin/memory", json={"action": "get_breakdown"})
    assert len(resp.json()["data"]["breakdown"]) == 2


def test_tenant_usage(client: TestClient) -> None:
    client.post("/v1/jobs", json={"queueName": "web-scraping"}, headers=TENANT)

    resp = client.get("/v1/admin/tenants/pro-co/usage")
    assert resp.status_code == 200
    body = resp.json()
    assert body["planTier"] == "professional"
    assert body["usage"]["monthlyCrawls"] == 1

    resp = client.post("/v1/admin/tenants/usage/reset-monthly", params={"tenantId": "pro-co"})
    assert resp.json()["data"]["reset"] == 1
    assert client.get("/v1/admin/tenants/pro-co/usage").json()["usage"]["monthlyCrawls"] == 0

    assert client.get("/v1/admin/tenants/nobody/usage").status_code == 404


def test_metrics_endpoint(client: TestClient) -> None:
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "crawlgate_queue_size" in resp.text


# ----------------------------------------------------------------------
# Jobs
# ----------------------------------------------------------------------


def test_submit_requires_tenant_header(client: TestClient) -> None:
    resp = client.post("/v1/jobs", json={"queueName": "web-scraping"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "TENANT_REQUIRED"


def test_submit_and_read_job(client: TestClient) -> None:
    resp = client.post(
        "/v1/jobs", json={"queueName": "web-scraping", "payload": {"name": "j"}}, headers=TENANT
    )
    assert resp.status_code == 201
    receipt = resp.json()
    assert receipt["priority"] == 2
    assert receipt["tenantId"] == "pro-co"

    resp = client.get(f"/v1/jobs/web-scraping/{receipt['jobId']}", headers=TENANT)
    assert resp.status_code == 200
    assert resp.json()["queueName"] == "web-scraping"

    # Other tenants cannot see it
    resp = client.get(
        f"/v1/jobs/web-scraping/{receipt['jobId']}", headers={"X-Tenant-ID": "free-co"}
    )
    assert resp.status_code == 404


def test_tenant_limit_denial_is_429(client: TestClient) -> None:
    headers = {"X-Tenant-ID": "free-co"}
    assert client.post("/v1/jobs", json={"queueName": "web-scraping"}, headers=headers).status_code == 201

    resp = client.post("/v1/jobs", json={"queueName": "web-scraping"}, headers=headers)
    assert resp.status_code == 429
    assert resp.json()["error"]["details"]["reason"] == "TenantLimitExceeded"


# ----------------------------------------------------------------------
# Auth
# ----------------------------------------------------------------------


def test_admin_routes_require_token_when_configured(secured_client: TestClient) -> None:
    assert secured_client.get("/v1/admin/queues").status_code == 403
    assert (
        secured_client.get(
            "/v1/admin/queues", headers={"Authorization": "Bearer wrong"}
        ).status_code
        == 403
    )

    resp = secured_client.get("/v1/admin/queues", headers={"Authorization": "Bearer s3cret"})
    assert resp.status_code == 200
