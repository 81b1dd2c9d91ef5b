from __future__ import annotations

import datetime as dt

import pytest

from integration_metrics.errors import MalformedEventError
from integration_metrics.metrics.events import (
    EventMetadata,
    EventStatus,
    api_call_event,
    bucket_of,
    build_event,
    rate_limit_event,
    sync_operation_event,
    webhook_event,
)

NOW = dt.datetime(2026, 10, 17, 12, 0, 30, tzinfo=dt.timezone.utc)


def _event(**overrides):
    fields = dict(
        user_id="u1",
        integration_id="int-1",
        provider="jira",
        action="api.get_issue",
        status="success",
        duration_ms=120,
        timestamp=NOW,
    )
    fields.update(overrides)
    return build_event(**fields)


def test_build_event_normalises_status_and_bucket() -> None:
    event = _event()

    assert event.status is EventStatus.SUCCESS
    assert event.duration_ms == 120.0
    assert event.bucket == int(NOW.timestamp()) // 60
    assert event.category == "api"
    assert event.day == dt.date(2026, 10, 17)


def test_build_event_stamps_current_time_when_missing() -> None:
    before = dt.datetime.now(dt.timezone.utc)
    event = _event(timestamp=None)
    assert event.timestamp >= before
    assert event.timestamp.tzinfo is not None


def test_timestamp_is_converted_to_utc() -> None:
    cet = dt.timezone(dt.timedelta(hours=2))
    event = _event(timestamp=dt.datetime(2026, 10, 17, 14, 0, tzinfo=cet))
    assert event.timestamp == dt.datetime(2026, 10, 17, 12, 0, tzinfo=dt.timezone.utc)
    assert event.timestamp.utcoffset() == dt.timedelta(0)


@pytest.mark.parametrize(
    "overrides",
    [
        {"user_id": ""},
        {"provider": "   "},
        {"action": ""},
        {"status": "exploded"},
        {"duration_ms": -1},
        {"duration_ms": float("nan")},
        {"timestamp": dt.datetime(2026, 10, 17, 12, 0)},
        {"status": "success", "error_message": "boom"},
        {"status": "rate_limited", "error_message": "slow down"},
    ],
)
def test_malformed_events_are_rejected(overrides) -> None:
    with pytest.raises(MalformedEventError):
        _event(**overrides)


def test_malformed_event_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        _event(duration_ms=-5)


def test_metadata_validation_and_serialisation() -> None:
    meta = EventMetadata(items_processed=3, error_count=0, extra={"board": "ENG"})
    assert meta.to_dict() == {"items_processed": 3, "error_count": 0, "extra": {"board": "ENG"}}

    with pytest.raises(MalformedEventError):
        EventMetadata(items_processed=-1)
    with pytest.raises(MalformedEventError):
        EventMetadata(extra={"count": 3})  # type: ignore[dict-item]


def test_api_call_event_maps_success_flag() -> None:
    ok = api_call_event(
        user_id="u1", integration_id="int-1", provider="jira", endpoint="get_issue", duration_ms=100, success=True,
        error_message="ignored on success", timestamp=NOW,
    )
    failed = api_call_event(
        user_id="u1", integration_id="int-1", provider="jira", endpoint="get_issue", duration_ms=100, success=False,
        error_message="404 Not Found", timestamp=NOW,
    )

    assert ok.action == "api.get_issue"
    assert ok.status is EventStatus.SUCCESS
    assert ok.error_message is None
    assert failed.status is EventStatus.ERROR
    assert failed.error_message == "404 Not Found"


def test_sync_operation_event_joins_errors() -> None:
    event = sync_operation_event(
        user_id="u1",
        integration_id="int-1",
        provider="asana",
        sync_type="tasks",
        duration_ms=5000,
        items_processed=42,
        success=False,
        errors=["task 1 failed", "task 2 failed"],
        timestamp=NOW,
    )

    assert event.action == "sync.tasks"
    assert event.category == "sync"
    assert event.status is EventStatus.ERROR
    assert event.error_message == "task 1 failed; task 2 failed"
    assert event.metadata.items_processed == 42
    assert event.metadata.error_count == 2


def test_successful_sync_keeps_error_count_without_message() -> None:
    event = sync_operation_event(
        user_id="u1",
        integration_id="int-1",
        provider="asana",
        sync_type="projects",
        duration_ms=100,
        items_processed=1,
        success=True,
        errors=["skipped archived project"],
        timestamp=NOW,
    )
    assert event.status is EventStatus.SUCCESS
    assert event.error_message is None
    assert event.metadata.error_count == 1


def test_webhook_event_is_attributed_to_system() -> None:
    event = webhook_event(provider="github", event_type="push", processing_time_ms=12.5, success=True, timestamp=NOW)

    assert event.user_id == "system"
    assert event.integration_id == "webhook"
    assert event.action == "webhook.push"
    assert event.metadata.event_type == "push"


def test_rate_limit_event() -> None:
    event = rate_limit_event(
        user_id="u1", integration_id="int-9", provider="paypal", endpoint="payments", retry_after_seconds=30,
        timestamp=NOW,
    )
    assert event.status is EventStatus.RATE_LIMITED
    assert event.category == "rate_limit"
    assert event.metadata.retry_after_seconds == 30
    assert event.duration_ms is None


def test_events_are_immutable() -> None:
    event = _event()
    with pytest.raises(AttributeError):
        event.provider = "github"  # type: ignore[misc]


def test_bucket_of_floors_to_minute() -> None:
    assert bucket_of(59.9) == 0
    assert bucket_of(60) == 1
    assert bucket_of(dt.datetime(1970, 1, 1, 0, 2, 1, tzinfo=dt.timezone.utc)) == 2


def test_unknown_action_prefix_maps_to_other_category() -> None:
    event = _event(action="list_repositories_v2")
    assert event.category == "other"
    assert _event(action="sync.full").category == "sync"


def test_event_fields_fit_event_log_columns() -> None:
    from integration_metrics.models import IntegrationEventRecord

    columns = IntegrationEventRecord.__table__.c
    event = _event(action="x" * 255, provider="p" * 64)

    assert len(event.category) <= columns.category.type.length
    for name in ("user_id", "integration_id", "provider", "action"):
        assert len(getattr(event, name)) <= columns[name].type.length


@pytest.mark.parametrize(
    "overrides",
    [
        {"user_id": "u" * 65},
        {"integration_id": "i" * 65},
        {"provider": "p" * 65},
        {"action": "api." + "a" * 252},
    ],
)
def test_oversized_fields_are_rejected(overrides) -> None:
    with pytest.raises(MalformedEventError):
        _event(**overrides)
