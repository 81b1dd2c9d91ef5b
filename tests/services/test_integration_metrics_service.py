from __future__ import annotations

import datetime as dt
import logging

import pytest
from sqlalchemy.exc import OperationalError

from integration_metrics.metrics.events import build_event
from integration_metrics.metrics.hot_store import Scope


@pytest.mark.asyncio
async def test_tracked_events_reach_both_tiers(service, clock):
    await service.start()
    assert service.track_api_call("u1", "int-1", "jira", "get_issue", 120, True)
    assert service.track_sync_operation("u1", "int-1", "jira", "issues", 5000, 42, False, ["a failed", "b failed"])
    assert service.track_webhook_event("jira", "issue_updated", 8, True)
    assert service.track_rate_limit("u1", "int-1", "jira", "search", 30)
    await service.flush()
    await service.close()

    counter = await service.hot_store.read_bucket(Scope.provider("jira"), int(clock()) // 60)
    assert counter.requests == 4
    assert counter.errors == 1
    assert counter.rate_limited == 1

    stored = service.event_log.query_provider("jira", since=clock.now - dt.timedelta(minutes=1))
    assert sorted(e.action for e in stored) == [
        "api.get_issue",
        "rate_limit.search",
        "sync.issues",
        "webhook.issue_updated",
    ]
    sync = next(e for e in stored if e.action == "sync.issues")
    assert sync.error_message == "a failed; b failed"
    assert sync.metadata["items_processed"] == 42
    assert service.queue_metrics().completed == 4


@pytest.mark.asyncio
async def test_malformed_input_returns_false(service):
    assert service.track_api_call("", "int-1", "jira", "get_issue", 10, True) is False
    assert service.track_api_call("u1", "int-1", "jira", "get_issue", -10, True) is False
    assert service.track(
        user_id="u1", integration_id="int-1", provider="jira", action="api.x", status="weird"
    ) is False
    assert service.queue_metrics().pending == 0


@pytest.mark.asyncio
async def test_hot_tier_failure_does_not_block_cold_write(service, redis, clock):
    redis.fail()
    event = build_event(
        user_id="u1", integration_id="int-1", provider="github", action="api.list_repos", status="success",
        duration_ms=12, timestamp=clock.now,
    )

    assert await service.record_event(event) is False

    stored = service.event_log.query_provider("github", since=clock.now - dt.timedelta(minutes=1))
    assert [e.action for e in stored] == ["api.list_repos"]


@pytest.mark.asyncio
async def test_slow_hot_tier_is_abandoned_after_deadline(service, redis, clock):
    service.settings = service.settings.model_copy(update={"metrics_hot_write_timeout_ms": 20})
    redis.delay = 0.5
    event = build_event(
        user_id="u1", integration_id="int-1", provider="github", action="api.list_repos", status="error",
        error_message="502 Bad Gateway", timestamp=clock.now,
    )

    assert await service.record_event(event) is False

    redis.delay = 0
    assert await redis.keys("metrics:*") == []
    assert len(service.event_log.query_provider("github", since=clock.now - dt.timedelta(minutes=1))) == 1


@pytest.mark.asyncio
async def test_full_queue_drops_instead_of_blocking(redis, session_factory, test_settings, clock):
    from integration_metrics.services.integration_metrics_service import IntegrationMetricsService

    cfg = test_settings.model_copy(update={"metrics_queue_maxsize": 1})
    service = IntegrationMetricsService(redis, session_factory, settings=cfg, clock=clock)

    assert service.track_api_call("u1", "int-1", "jira", "a", 1, True)
    assert service.track_api_call("u1", "int-1", "jira", "b", 1, True) is False
    assert service.queue_metrics().dropped == 1

    await service.start()
    await service.close()
    assert service.queue_metrics().completed == 1


@pytest.mark.asyncio
async def test_cleanup_old_metrics(service, clock):
    for days_ago in (40, 35, 2):
        service.event_log.append(
            build_event(
                user_id="u1", integration_id="int-1", provider="asana", action="api.tasks", status="success",
                timestamp=clock.now - dt.timedelta(days=days_ago),
            )
        )

    assert await service.cleanup_old_metrics() == 2
    assert await service.cleanup_old_metrics(1) == 1
    assert await service.cleanup_old_metrics(1) == 0


@pytest.mark.asyncio
async def test_failed_sweep_is_logged_and_absorbed(service, monkeypatch, caplog):
    def broken_sweep(days):
        raise OperationalError("DELETE FROM integration_events", {}, Exception("database is locked"))

    monkeypatch.setattr(service.sweeper, "sweep", broken_sweep)

    with caplog.at_level(logging.ERROR, logger="integration_metrics"):
        assert await service.cleanup_old_metrics() == 0

    assert "integration_events cleanup failed" in caplog.text


@pytest.mark.asyncio
async def test_cleanup_rejects_non_positive_retention(service, monkeypatch, caplog):
    calls = []
    monkeypatch.setattr(service.sweeper, "sweep", lambda days: calls.append(days) or 0)

    with caplog.at_level(logging.WARNING, logger="integration_metrics"):
        assert await service.cleanup_old_metrics(-1) == 0
        assert await service.cleanup_old_metrics(0) == 0

    assert calls == []
    assert "retention_days must be >= 1" in caplog.text


def test_oversized_action_is_rejected_at_the_wrapper(service):
    assert service.track_api_call("u1", "int-1", "jira", "e" * 300, 10, True) is False
    assert service.track(
        user_id="u1", integration_id="int-1", provider="jira", action="list_repositories_v2", status="success"
    ) is True
    assert service.queue_metrics().pending == 1
