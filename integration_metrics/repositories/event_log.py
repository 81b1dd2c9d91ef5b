from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy import case, delete, func, literal, select, union_all
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from integration_metrics.logging_config import logger
from integration_metrics.metrics.events import SYSTEM_USER_ID, EventStatus, IntegrationEvent
from integration_metrics.metrics.hot_store import (
    SCOPE_GLOBAL,
    SCOPE_INTEGRATION,
    SCOPE_PROVIDER,
    SCOPE_USER,
    CounterBucket,
    Scope,
)
from integration_metrics.models import Integration, IntegrationEventRecord, IntegrationSyncLog, SyncStatus

SessionFactory = Callable[[], Session]


def _as_utc(value: dt.datetime | str | None) -> dt.datetime | None:
    # SQLite hands back naive datetimes (or raw strings from aggregates).
    if value is None:
        return None
    if isinstance(value, str):
        value = dt.datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


@dataclass(frozen=True)
class StoredEvent:
    id: str
    user_id: str
    integration_id: str
    provider: str
    action: str
    category: str
    status: str
    duration_ms: float | None
    error_message: str | None
    metadata: dict[str, Any]
    created_at: dt.datetime

    @classmethod
    def from_row(cls, row: IntegrationEventRecord) -> "StoredEvent":
        return cls(
            id=str(row.id),
            user_id=row.user_id,
            integration_id=row.integration_id,
            provider=row.provider,
            action=row.action,
            category=row.category,
            status=row.status,
            duration_ms=row.duration_ms,
            error_message=row.error_message,
            metadata=dict(row.metadata_json or {}),
            created_at=_as_utc(row.created_at),
        )


@dataclass(frozen=True)
class TopErrorRow:
    error: str
    provider: str
    count: int
    first_seen: dt.datetime
    last_seen: dt.datetime


@dataclass(frozen=True)
class ProviderStatusCount:
    provider: str
    total: int
    success: int


def _scope_filter(scope: Scope):
    if scope.kind == SCOPE_PROVIDER:
        return IntegrationEventRecord.provider == scope.identifier
    if scope.kind == SCOPE_USER:
        return IntegrationEventRecord.user_id == scope.identifier
    if scope.kind == SCOPE_INTEGRATION:
        return IntegrationEventRecord.integration_id == scope.identifier
    if scope.kind == SCOPE_GLOBAL:
        return None
    raise ValueError(f"unknown scope kind {scope.kind!r}")


class DurableEventLog:
    """
    Append-only event log in ``integration_events`` (the cold tier).

    All methods are blocking; async callers go through ``asyncio.to_thread``.
    Only ``append`` absorbs database errors, every read lets them propagate.
    """

    def __init__(self, session_factory: SessionFactory, *, error_message_max_length: int = 100) -> None:
        self._session_factory = session_factory
        self.error_message_max_length = error_message_max_length

    def append(self, event: IntegrationEvent) -> bool:
        row = IntegrationEventRecord(
            user_id=event.user_id,
            integration_id=event.integration_id,
            provider=event.provider,
            action=event.action,
            category=event.category,
            status=event.status.value,
            duration_ms=event.duration_ms,
            error_message=event.error_message,
            metadata_json=event.metadata.to_dict(),
            created_at=event.timestamp,
            updated_at=event.timestamp,
        )
        with self._session_factory() as session:
            try:
                session.add(row)
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                logger.exception(
                    "event_log: failed to append %s event for provider=%s integration=%s",
                    event.action,
                    event.provider,
                    event.integration_id,
                )
                return False
        return True

    def query_provider(
        self,
        provider: str,
        since: dt.datetime,
        limit: int | None = None,
    ) -> list[StoredEvent]:
        stmt = (
            select(IntegrationEventRecord)
            .where(
                IntegrationEventRecord.provider == provider,
                IntegrationEventRecord.created_at >= since,
            )
            .order_by(IntegrationEventRecord.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(max(1, int(limit)))
        with self._session_factory() as session:
            rows = session.execute(stmt).scalars().all()
            return [StoredEvent.from_row(row) for row in rows]

    def query_top_errors(
        self,
        *,
        since: dt.datetime,
        provider: str | None = None,
        limit: int = 10,
    ) -> list[TopErrorRow]:
        """
        Most frequent failure messages across event and sync-log errors.

        Messages are truncated before grouping so variants that only differ
        past the cutoff fold together. Ties on count go to the error seen
        first, then to the message text, so the order is stable.
        """
        width = self.error_message_max_length

        event_errors = select(
            func.substr(IntegrationEventRecord.error_message, 1, width).label("error"),
            IntegrationEventRecord.provider.label("provider"),
            IntegrationEventRecord.created_at.label("occurred_at"),
        ).where(
            IntegrationEventRecord.status == EventStatus.ERROR.value,
            IntegrationEventRecord.error_message.is_not(None),
            IntegrationEventRecord.created_at >= since,
        )
        sync_errors = (
            select(
                func.substr(IntegrationSyncLog.error_message, 1, width).label("error"),
                Integration.provider.label("provider"),
                IntegrationSyncLog.started_at.label("occurred_at"),
            )
            .join(Integration, Integration.id == IntegrationSyncLog.integration_id)
            .where(
                IntegrationSyncLog.status == SyncStatus.ERROR,
                IntegrationSyncLog.error_message.is_not(None),
                IntegrationSyncLog.started_at >= since,
            )
        )
        if provider is not None:
            event_errors = event_errors.where(IntegrationEventRecord.provider == provider)
            sync_errors = sync_errors.where(Integration.provider == provider)

        combined = union_all(event_errors, sync_errors).subquery("errors")
        count_col = func.count(literal(1)).label("occurrences")
        first_seen = func.min(combined.c.occurred_at).label("first_seen")
        stmt = (
            select(
                combined.c.error,
                combined.c.provider,
                count_col,
                first_seen,
                func.max(combined.c.occurred_at).label("last_seen"),
            )
            .group_by(combined.c.error, combined.c.provider)
            .order_by(count_col.desc(), first_seen.asc(), combined.c.error.asc())
            .limit(max(1, int(limit)))
        )
        with self._session_factory() as session:
            rows = session.execute(stmt).all()
        return [
            TopErrorRow(
                error=row.error,
                provider=row.provider,
                count=int(row.occurrences),
                first_seen=_as_utc(row.first_seen),
                last_seen=_as_utc(row.last_seen),
            )
            for row in rows
        ]

    def summarize(self, scope: Scope, start: dt.datetime, end: dt.datetime) -> CounterBucket:
        """Counts and total duration for events with ``start <= created_at < end``."""
        if end <= start:
            return CounterBucket()
        stmt = select(
            IntegrationEventRecord.status,
            func.count(IntegrationEventRecord.id),
            func.coalesce(func.sum(IntegrationEventRecord.duration_ms), 0.0),
        ).where(
            IntegrationEventRecord.created_at >= start,
            IntegrationEventRecord.created_at < end,
        )
        condition = _scope_filter(scope)
        if condition is not None:
            stmt = stmt.where(condition)
        stmt = stmt.group_by(IntegrationEventRecord.status)

        with self._session_factory() as session:
            rows = session.execute(stmt).all()

        by_status: dict[str, int] = {}
        total_duration = 0.0
        for status, count, duration in rows:
            by_status[status] = int(count or 0)
            total_duration += float(duration or 0.0)
        successes = by_status.get(EventStatus.SUCCESS.value, 0)
        errors = by_status.get(EventStatus.ERROR.value, 0)
        rate_limited = by_status.get(EventStatus.RATE_LIMITED.value, 0)
        return CounterBucket(
            requests=successes + errors + rate_limited,
            successes=successes,
            errors=errors,
            rate_limited=rate_limited,
            total_duration=total_duration,
        )

    def count_active_users(self, provider: str, since: dt.datetime) -> int:
        stmt = select(func.count(func.distinct(IntegrationEventRecord.user_id))).where(
            IntegrationEventRecord.provider == provider,
            IntegrationEventRecord.created_at >= since,
            IntegrationEventRecord.user_id != SYSTEM_USER_ID,
        )
        with self._session_factory() as session:
            return int(session.execute(stmt).scalar_one() or 0)

    def latest_activity(self, integration_id: str) -> dt.datetime | None:
        stmt = select(func.max(IntegrationEventRecord.created_at)).where(
            IntegrationEventRecord.integration_id == integration_id
        )
        with self._session_factory() as session:
            return _as_utc(session.execute(stmt).scalar_one_or_none())

    def provider_status_counts(self, since: dt.datetime) -> list[ProviderStatusCount]:
        success_count = func.sum(
            case((IntegrationEventRecord.status == EventStatus.SUCCESS.value, 1), else_=0)
        )
        stmt = (
            select(
                IntegrationEventRecord.provider,
                func.count(IntegrationEventRecord.id),
                success_count,
            )
            .where(IntegrationEventRecord.created_at >= since)
            .group_by(IntegrationEventRecord.provider)
            .order_by(IntegrationEventRecord.provider.asc())
        )
        with self._session_factory() as session:
            rows = session.execute(stmt).all()
        return [
            ProviderStatusCount(provider=provider, total=int(total or 0), success=int(success or 0))
            for provider, total, success in rows
        ]

    def delete_before(self, cutoff: dt.datetime, *, batch_size: int = 5000) -> int:
        """Delete events older than ``cutoff`` in id batches, one commit per batch."""
        total_deleted = 0
        with self._session_factory() as session:
            while True:
                ids = [
                    row[0]
                    for row in session.execute(
                        select(IntegrationEventRecord.id)
                        .where(IntegrationEventRecord.created_at < cutoff)
                        .order_by(IntegrationEventRecord.created_at.asc())
                        .limit(batch_size)
                    ).all()
                ]
                if not ids:
                    break
                session.execute(delete(IntegrationEventRecord).where(IntegrationEventRecord.id.in_(ids)))
                session.commit()
                total_deleted += len(ids)
                if len(ids) < batch_size:
                    break
        return total_deleted


__all__ = [
    "DurableEventLog",
    "ProviderStatusCount",
    "SessionFactory",
    "StoredEvent",
    "TopErrorRow",
]
