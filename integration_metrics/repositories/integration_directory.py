from __future__ import annotations

import datetime as dt
from dataclasses import dataclass

from sqlalchemy import and_, exists, func, select

from integration_metrics.models import ConnectionStatus, Integration, IntegrationSyncLog, SyncStatus, User

from .event_log import SessionFactory, _as_utc


@dataclass(frozen=True)
class IntegrationInfo:
    id: str
    user_id: str
    provider: str
    enabled: bool
    connection_status: str


@dataclass(frozen=True)
class SyncLogEntry:
    id: str
    status: str
    started_at: dt.datetime
    completed_at: dt.datetime | None
    items_processed: int
    error_message: str | None

    @property
    def duration_ms(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000.0


@dataclass(frozen=True)
class CountPair:
    total: int
    active: int


def _is_active_integration():
    return and_(
        Integration.enabled.is_(True),
        Integration.connection_status == ConnectionStatus.CONNECTED,
    )


class IntegrationDirectory:
    """Read-only view of users, integrations and their sync history."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get_integration(self, integration_id: str) -> IntegrationInfo | None:
        with self._session_factory() as session:
            row = session.get(Integration, integration_id)
            if row is None:
                return None
            status = row.connection_status
            return IntegrationInfo(
                id=row.id,
                user_id=row.user_id,
                provider=row.provider,
                enabled=bool(row.enabled),
                connection_status=status.value if isinstance(status, ConnectionStatus) else str(status),
            )

    def integration_counts(self) -> CountPair:
        stmt = select(
            func.count(Integration.id),
            func.count(Integration.id).filter(_is_active_integration()),
        )
        with self._session_factory() as session:
            total, active = session.execute(stmt).one()
        return CountPair(total=int(total or 0), active=int(active or 0))

    def user_counts(self) -> CountPair:
        """A user is active when at least one of their integrations is enabled and connected."""
        has_active = exists().where(Integration.user_id == User.id, _is_active_integration())
        stmt = select(
            func.count(User.id),
            func.count(User.id).filter(has_active),
        )
        with self._session_factory() as session:
            total, active = session.execute(stmt).one()
        return CountPair(total=int(total or 0), active=int(active or 0))

    def count_provider_users(self, provider: str) -> int:
        stmt = select(func.count(func.distinct(Integration.user_id))).where(Integration.provider == provider)
        with self._session_factory() as session:
            return int(session.execute(stmt).scalar_one() or 0)

    def recent_sync_logs(self, integration_id: str, limit: int = 100) -> list[SyncLogEntry]:
        stmt = (
            select(IntegrationSyncLog)
            .where(IntegrationSyncLog.integration_id == integration_id)
            .order_by(IntegrationSyncLog.started_at.desc())
            .limit(max(1, int(limit)))
        )
        with self._session_factory() as session:
            rows = session.execute(stmt).scalars().all()
            return [
                SyncLogEntry(
                    id=row.id,
                    status=row.status.value if isinstance(row.status, SyncStatus) else str(row.status),
                    started_at=_as_utc(row.started_at),
                    completed_at=_as_utc(row.completed_at),
                    items_processed=int(row.items_processed or 0),
                    error_message=row.error_message,
                )
                for row in rows
            ]

    def last_sync_for_provider(self, provider: str) -> dt.datetime | None:
        stmt = (
            select(func.max(IntegrationSyncLog.started_at))
            .join(Integration, Integration.id == IntegrationSyncLog.integration_id)
            .where(Integration.provider == provider)
        )
        with self._session_factory() as session:
            return _as_utc(session.execute(stmt).scalar_one_or_none())


__all__ = ["CountPair", "IntegrationDirectory", "IntegrationInfo", "SyncLogEntry"]
