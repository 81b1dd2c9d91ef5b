"""
Integration event model.

An `IntegrationEvent` is the unit every adapter reports: one outbound API
call, one sync pass, one webhook delivery or one rate-limit hit. Events are
validated once at construction and are immutable afterwards, so the hot and
cold writers can share the same instance concurrently.
"""

from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from integration_metrics.errors import MalformedEventError

BUCKET_SECONDS = 60

# Webhook deliveries are not attributable to a single user connection.
SYSTEM_USER_ID = "system"
WEBHOOK_INTEGRATION_ID = "webhook"


class EventStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"


class EventCategory(str, Enum):
    API = "api"
    SYNC = "sync"
    WEBHOOK = "webhook"
    RATE_LIMIT = "rate_limit"
    OTHER = "other"


# Column widths of integration_events; longer values are rejected up front.
FIELD_MAX_LENGTHS: dict[str, int] = {
    "user_id": 64,
    "integration_id": 64,
    "provider": 64,
    "action": 255,
}


def bucket_of(timestamp: dt.datetime | float) -> int:
    """Minute bucket index (epoch seconds // 60) for a datetime or epoch value."""
    if isinstance(timestamp, dt.datetime):
        timestamp = timestamp.timestamp()
    return int(math.floor(timestamp / BUCKET_SECONDS))


def bucket_start(bucket: int) -> dt.datetime:
    return dt.datetime.fromtimestamp(bucket * BUCKET_SECONDS, tz=dt.timezone.utc)


@dataclass(frozen=True)
class EventMetadata:
    items_processed: int | None = None
    error_count: int | None = None
    retry_after_seconds: int | None = None
    event_type: str | None = None
    extra: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("items_processed", "error_count", "retry_after_seconds"):
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                raise MalformedEventError(f"metadata.{name} must be a non-negative integer, got {value!r}")
        for key, value in self.extra.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise MalformedEventError("metadata.extra must map strings to strings")
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for name in ("items_processed", "error_count", "retry_after_seconds", "event_type"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if self.extra:
            data["extra"] = dict(self.extra)
        return data


@dataclass(frozen=True)
class IntegrationEvent:
    user_id: str
    integration_id: str
    provider: str
    action: str
    status: EventStatus
    timestamp: dt.datetime
    duration_ms: float | None = None
    error_message: str | None = None
    metadata: EventMetadata = field(default_factory=EventMetadata)

    def __post_init__(self) -> None:
        for name, max_length in FIELD_MAX_LENGTHS.items():
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise MalformedEventError(f"{name} must be a non-empty string")
            if len(value) > max_length:
                raise MalformedEventError(f"{name} must be at most {max_length} characters, got {len(value)}")

        try:
            status = EventStatus(self.status)
        except ValueError as exc:
            raise MalformedEventError(f"unknown event status {self.status!r}") from exc
        object.__setattr__(self, "status", status)

        if self.duration_ms is not None:
            if isinstance(self.duration_ms, bool) or not isinstance(self.duration_ms, (int, float)):
                raise MalformedEventError("duration_ms must be a number")
            if not math.isfinite(self.duration_ms) or self.duration_ms < 0:
                raise MalformedEventError(f"duration_ms must be >= 0, got {self.duration_ms!r}")
            object.__setattr__(self, "duration_ms", float(self.duration_ms))

        if self.error_message is not None and status is not EventStatus.ERROR:
            raise MalformedEventError("error_message is only allowed on events with status 'error'")

        if not isinstance(self.timestamp, dt.datetime):
            raise MalformedEventError("timestamp must be a datetime")
        if self.timestamp.tzinfo is None:
            raise MalformedEventError("timestamp must be timezone-aware")
        object.__setattr__(self, "timestamp", self.timestamp.astimezone(dt.timezone.utc))

        if not isinstance(self.metadata, EventMetadata):
            raise MalformedEventError("metadata must be an EventMetadata instance")

    @property
    def bucket(self) -> int:
        return bucket_of(self.timestamp)

    @property
    def day(self) -> dt.date:
        return self.timestamp.date()

    @property
    def category(self) -> str:
        prefix = self.action.split(".", 1)[0]
        for category in EventCategory:
            if prefix == category.value:
                return category.value
        return EventCategory.OTHER.value


def build_event(
    *,
    user_id: str,
    integration_id: str,
    provider: str,
    action: str,
    status: EventStatus | str,
    duration_ms: float | None = None,
    error_message: str | None = None,
    metadata: EventMetadata | None = None,
    timestamp: dt.datetime | None = None,
) -> IntegrationEvent:
    """Validate and stamp a new event; `timestamp` defaults to now (UTC)."""
    return IntegrationEvent(
        user_id=user_id,
        integration_id=integration_id,
        provider=provider,
        action=action,
        status=status,  # type: ignore[arg-type]
        timestamp=timestamp or dt.datetime.now(dt.timezone.utc),
        duration_ms=duration_ms,
        error_message=error_message,
        metadata=metadata or EventMetadata(),
    )


def api_call_event(
    *,
    user_id: str,
    integration_id: str,
    provider: str,
    endpoint: str,
    duration_ms: float,
    success: bool,
    error_message: str | None = None,
    timestamp: dt.datetime | None = None,
) -> IntegrationEvent:
    return build_event(
        user_id=user_id,
        integration_id=integration_id,
        provider=provider,
        action=f"api.{endpoint}",
        status=EventStatus.SUCCESS if success else EventStatus.ERROR,
        duration_ms=duration_ms,
        error_message=None if success else error_message,
        timestamp=timestamp,
    )


def sync_operation_event(
    *,
    user_id: str,
    integration_id: str,
    provider: str,
    sync_type: str,
    duration_ms: float,
    items_processed: int,
    success: bool,
    errors: Iterable[str] = (),
    timestamp: dt.datetime | None = None,
) -> IntegrationEvent:
    errors = [e for e in errors if e]
    error_message = "; ".join(errors) if errors and not success else None
    return build_event(
        user_id=user_id,
        integration_id=integration_id,
        provider=provider,
        action=f"sync.{sync_type}",
        status=EventStatus.SUCCESS if success else EventStatus.ERROR,
        duration_ms=duration_ms,
        error_message=error_message,
        metadata=EventMetadata(items_processed=items_processed, error_count=len(errors)),
        timestamp=timestamp,
    )


def webhook_event(
    *,
    provider: str,
    event_type: str,
    processing_time_ms: float,
    success: bool,
    error_message: str | None = None,
    timestamp: dt.datetime | None = None,
) -> IntegrationEvent:
    return build_event(
        user_id=SYSTEM_USER_ID,
        integration_id=WEBHOOK_INTEGRATION_ID,
        provider=provider,
        action=f"webhook.{event_type}",
        status=EventStatus.SUCCESS if success else EventStatus.ERROR,
        duration_ms=processing_time_ms,
        error_message=None if success else error_message,
        metadata=EventMetadata(event_type=event_type),
        timestamp=timestamp,
    )


def rate_limit_event(
    *,
    user_id: str,
    integration_id: str,
    provider: str,
    endpoint: str,
    retry_after_seconds: int,
    timestamp: dt.datetime | None = None,
) -> IntegrationEvent:
    return build_event(
        user_id=user_id,
        integration_id=integration_id,
        provider=provider,
        action=f"rate_limit.{endpoint}",
        status=EventStatus.RATE_LIMITED,
        metadata=EventMetadata(retry_after_seconds=retry_after_seconds),
        timestamp=timestamp,
    )


__all__ = [
    "BUCKET_SECONDS",
    "SYSTEM_USER_ID",
    "WEBHOOK_INTEGRATION_ID",
    "EventCategory",
    "EventMetadata",
    "EventStatus",
    "IntegrationEvent",
    "api_call_event",
    "bucket_of",
    "bucket_start",
    "build_event",
    "rate_limit_event",
    "sync_operation_event",
    "webhook_event",
]
