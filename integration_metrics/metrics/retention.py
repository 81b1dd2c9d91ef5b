from __future__ import annotations

import datetime as dt
import time
from typing import Callable

from sqlalchemy import text
from sqlalchemy.orm import Session

from integration_metrics.logging_config import logger
from integration_metrics.repositories.event_log import DurableEventLog

INTEGRATION_EVENTS_CLEANUP_LOCK_ID = 8203001


class _PgAdvisoryLock:
    def __init__(self, session: Session, lock_id: int) -> None:
        self._session = session
        self._lock_id = int(lock_id)
        self.acquired = False

    @property
    def _is_postgres(self) -> bool:
        return self._session.get_bind().dialect.name == "postgresql"

    def __enter__(self):
        if not self._is_postgres:
            return self
        row = self._session.execute(
            text("SELECT pg_try_advisory_lock(:lock_id)"),
            {"lock_id": self._lock_id},
        ).one()
        self.acquired = bool(row[0])
        return self

    def __exit__(self, exc_type, exc, tb):
        if not self._is_postgres:
            return False
        if self.acquired:
            self._session.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"),
                {"lock_id": self._lock_id},
            )
        return False


class RetentionSweeper:
    """
    Deletes ``integration_events`` rows older than the retention horizon.

    Safe to re-run: a second sweep with the same cutoff finds nothing. On
    PostgreSQL a try-lock keeps concurrent sweepers from racing; the loser
    returns 0 immediately. Writers are never blocked by the lock.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        batch_size: int = 5000,
        clock: Callable[[], float] = time.time,
        lock_id: int = INTEGRATION_EVENTS_CLEANUP_LOCK_ID,
    ) -> None:
        self._session_factory = session_factory
        self._event_log = DurableEventLog(session_factory)
        self.batch_size = batch_size
        self._clock = clock
        self._lock_id = lock_id

    def cutoff_for(self, retention_days: int) -> dt.datetime:
        now = dt.datetime.fromtimestamp(self._clock(), tz=dt.timezone.utc)
        return now - dt.timedelta(days=retention_days)

    def sweep(self, retention_days: int) -> int:
        if retention_days < 1:
            raise ValueError("retention_days must be >= 1")
        cutoff = self.cutoff_for(retention_days)

        with self._session_factory() as lock_session:
            with _PgAdvisoryLock(lock_session, self._lock_id) as lock:
                if lock_session.get_bind().dialect.name == "postgresql" and not lock.acquired:
                    logger.info("retention: another sweeper holds the lock, skipping")
                    return 0
                deleted = self._event_log.delete_before(cutoff, batch_size=self.batch_size)

        logger.info(
            "retention: deleted %s integration_events older than %s (retention_days=%s)",
            deleted,
            cutoff.isoformat(),
            retention_days,
        )
        return deleted


__all__ = ["INTEGRATION_EVENTS_CLEANUP_LOCK_ID", "RetentionSweeper"]
