from __future__ import annotations

import asyncio
import datetime as dt

import pytest
from fastapi.testclient import TestClient

from integration_metrics.metrics.events import build_event, rate_limit_event
from integration_metrics.routes import create_app
from tests.utils import seed_integration

BASE = "/metrics/integrations"


@pytest.fixture()
def client(service):
    app = create_app(metrics_service=service)
    return TestClient(app)


def _record(service, clock, **overrides):
    fields = dict(
        user_id="u1",
        integration_id="int-1",
        provider="jira",
        action="api.get_issue",
        status="success",
        duration_ms=100,
        timestamp=clock.now,
    )
    fields.update(overrides)
    asyncio.run(service.record_event(build_event(**fields)))


def test_provider_metrics_endpoint(client, service, clock):
    _record(service, clock, duration_ms=100)
    _record(service, clock, duration_ms=200)
    _record(service, clock, status="error", duration_ms=None, error_message="Issue does not exist")

    resp = client.get(f"{BASE}/providers/jira", params={"time_range": "1h"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["provider"] == "jira"
    assert body["time_range"] == "1h"
    assert body["total_requests"] == 3
    assert body["success_rate"] == 66.67
    assert body["error_rate"] == 33.33
    assert body["average_response_time"] == 100
    assert body["top_errors"][0]["error"] == "Issue does not exist"


def test_provider_metrics_defaults_to_24h(client):
    resp = client.get(f"{BASE}/providers/unknown")
    assert resp.status_code == 200
    assert resp.json()["time_range"] == "24h"
    assert resp.json()["total_requests"] == 0


def test_provider_metrics_rejects_unknown_time_range(client):
    resp = client.get(f"{BASE}/providers/jira", params={"time_range": "90d"})
    assert resp.status_code == 422


def test_query_failure_maps_to_503(client, redis):
    redis.fail()

    resp = client.get(f"{BASE}/system")

    assert resp.status_code == 503
    detail = resp.json()["detail"]
    assert detail["error"] == "metrics_query_failed"
    assert detail["code"] == 503


def test_user_integration_endpoint(client, service, session_factory, clock):
    with session_factory() as session:
        seed_integration(session, user_id="u1", integration_id="int-1", provider="jira")
    _record(service, clock)
    asyncio.run(
        service.record_event(
            rate_limit_event(
                user_id="u1", integration_id="int-1", provider="jira", endpoint="search", retry_after_seconds=10,
                timestamp=clock.now,
            )
        )
    )

    resp = client.get(f"{BASE}/users/u1/integrations/int-1")
    assert resp.status_code == 200
    body = resp.json()
    assert body["total_requests"] == 2
    assert body["rate_limited_requests"] == 1
    assert body["quota_usage"]["used"] == 2

    missing = client.get(f"{BASE}/users/u2/integrations/int-1")
    assert missing.status_code == 404
    assert missing.json()["detail"]["details"] == {"user_id": "u2", "integration_id": "int-1"}


def test_events_errors_and_rollups(client, service, clock):
    _record(service, clock, provider="circleci", action="api.pipelines")
    _record(service, clock, provider="circleci", status="error", duration_ms=None, error_message="quota exceeded")

    events = client.get(f"{BASE}/providers/circleci/events", params={"limit": 10})
    assert events.status_code == 200
    assert {e["status"] for e in events.json()} == {"success", "error"}

    errors = client.get(f"{BASE}/errors", params={"provider": "circleci"})
    assert [(e["error"], e["count"]) for e in errors.json()] == [("quota exceeded", 1)]

    rollups = client.get(f"{BASE}/rollups/global/all", params={"days": 2})
    assert rollups.status_code == 200
    assert [r["total"] for r in rollups.json()] == [0, 2]

    assert client.get(f"{BASE}/rollups/tenant/x").status_code == 422


def test_cleanup_endpoint(client, service, clock):
    service.event_log.append(
        build_event(
            user_id="u1", integration_id="int-1", provider="jira", action="api.old", status="success",
            timestamp=clock.now - dt.timedelta(days=90),
        )
    )

    resp = client.post(f"{BASE}/maintenance/cleanup", params={"retention_days": 30})

    assert resp.status_code == 200
    assert resp.json() == {"deleted": 1, "retention_days": 30}


def test_lifespan_starts_and_stops_queue_workers(service, redis):
    app = create_app(metrics_service=service)
    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok"}
        assert service.queue.running

    assert not service.queue.running
    # Injected clients belong to the caller and stay open.
    assert redis.closed is False


def test_missing_service_returns_503():
    app = create_app()
    client = TestClient(app)

    resp = client.get(f"{BASE}/system")
    assert resp.status_code == 503
