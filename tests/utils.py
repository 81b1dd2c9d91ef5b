from __future__ import annotations

import asyncio
import datetime as dt
from pathlib import Path
from typing import Any, Callable

from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from integration_metrics.models import (
    Base,
    ConnectionStatus,
    Integration,
    IntegrationSyncLog,
    SyncStatus,
    User,
)

# 2026-10-17 12:00:30 UTC: mid-minute so "same bucket" scenarios stay put.
DEFAULT_NOW = dt.datetime(2026, 10, 17, 12, 0, 30, tzinfo=dt.timezone.utc)


class FrozenClock:
    """Callable epoch clock that only moves when a test advances it."""

    def __init__(self, start: dt.datetime = DEFAULT_NOW) -> None:
        self._now = start.timestamp()

    def __call__(self) -> float:
        return self._now

    @property
    def now(self) -> dt.datetime:
        return dt.datetime.fromtimestamp(self._now, tz=dt.timezone.utc)

    def advance(self, seconds: float) -> None:
        self._now += seconds


class _Pipeline:
    def __init__(self, redis: "InMemoryRedis", transaction: bool) -> None:
        self._redis = redis
        self.transaction = transaction
        self._ops: list[tuple[str, tuple[Any, ...]]] = []

    def _queue(self, name: str, *args: Any) -> "_Pipeline":
        self._ops.append((name, args))
        return self

    def hincrby(self, key: str, field: str, amount: int = 1) -> "_Pipeline":
        return self._queue("hincrby", key, field, amount)

    def hincrbyfloat(self, key: str, field: str, amount: float = 1.0) -> "_Pipeline":
        return self._queue("hincrbyfloat", key, field, amount)

    def expire(self, key: str, seconds: int) -> "_Pipeline":
        return self._queue("expire", key, seconds)

    def hgetall(self, key: str) -> "_Pipeline":
        return self._queue("hgetall", key)

    async def execute(self) -> list[Any]:
        await self._redis._before_command()
        if self.transaction:
            self._redis.transactions += 1
        # No await between commands: the batch is applied atomically.
        results = [getattr(self._redis, f"_{name}")(*args) for name, args in self._ops]
        self._ops = []
        return results


class InMemoryRedis:
    """
    Minimal async Redis stand-in for the hot tier: hashes, EXPIRE against an
    injectable clock, and (transactional) pipelines.

    Set ``fail_with`` to make every command raise, or ``delay`` to slow
    every command down.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or FrozenClock()
        self._hashes: dict[str, dict[str, str]] = {}
        self._expires_at: dict[str, float] = {}
        self.transactions = 0
        self.fail_with: Exception | None = None
        self.delay: float = 0.0
        self.closed = False

    async def _before_command(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    def fail(self, message: str = "redis unavailable") -> None:
        self.fail_with = RedisConnectionError(message)

    def _purge(self, key: str) -> None:
        deadline = self._expires_at.get(key)
        if deadline is not None and deadline <= self._clock():
            self._hashes.pop(key, None)
            self._expires_at.pop(key, None)

    # --- sync primitives shared by direct calls and pipelines ---

    def _hincrby(self, key: str, field: str, amount: int) -> int:
        self._purge(key)
        h = self._hashes.setdefault(key, {})
        value = int(h.get(field, 0)) + int(amount)
        h[field] = str(value)
        return value

    def _hincrbyfloat(self, key: str, field: str, amount: float) -> float:
        self._purge(key)
        h = self._hashes.setdefault(key, {})
        value = float(h.get(field, 0.0)) + float(amount)
        h[field] = repr(value)
        return value

    def _expire(self, key: str, seconds: int) -> bool:
        self._purge(key)
        if key not in self._hashes:
            return False
        self._expires_at[key] = self._clock() + seconds
        return True

    def _hgetall(self, key: str) -> dict[str, str]:
        self._purge(key)
        return dict(self._hashes.get(key, {}))

    # --- async client surface ---

    def pipeline(self, transaction: bool = True) -> _Pipeline:
        return _Pipeline(self, transaction)

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        await self._before_command()
        return self._hincrby(key, field, amount)

    async def hincrbyfloat(self, key: str, field: str, amount: float = 1.0) -> float:
        await self._before_command()
        return self._hincrbyfloat(key, field, amount)

    async def expire(self, key: str, seconds: int) -> bool:
        await self._before_command()
        return self._expire(key, seconds)

    async def hgetall(self, key: str) -> dict[str, str]:
        await self._before_command()
        return self._hgetall(key)

    async def ttl(self, key: str) -> int:
        self._purge(key)
        if key not in self._hashes:
            return -2
        deadline = self._expires_at.get(key)
        if deadline is None:
            return -1
        return int(deadline - self._clock())

    async def keys(self, pattern: str = "*") -> list[str]:
        import fnmatch

        for key in list(self._hashes):
            self._purge(key)
        return sorted(k for k in self._hashes if fnmatch.fnmatch(k, pattern))

    async def aclose(self) -> None:
        self.closed = True


def install_inmemory_db(db_path: Path) -> sessionmaker[Session]:
    """
    File-backed SQLite database: the engine reads the tiers from worker
    threads concurrently, so every thread needs its own connection.
    """

    engine = create_engine(
        f"sqlite+pysqlite:///{db_path}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)

    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )


def seed_integration(
    session: Session,
    *,
    user_id: str,
    integration_id: str,
    provider: str,
    enabled: bool = True,
    status: ConnectionStatus = ConnectionStatus.CONNECTED,
) -> Integration:
    if session.get(User, user_id) is None:
        session.add(User(id=user_id, email=f"{user_id}@example.com"))
        session.flush()
    integration = Integration(
        id=integration_id,
        user_id=user_id,
        provider=provider,
        enabled=enabled,
        connection_status=status,
    )
    session.add(integration)
    session.commit()
    return integration


def seed_sync_log(
    session: Session,
    *,
    log_id: str,
    integration_id: str,
    status: SyncStatus,
    started_at: dt.datetime,
    duration_ms: float | None = None,
    error_message: str | None = None,
    items_processed: int = 0,
) -> IntegrationSyncLog:
    completed_at = None
    if duration_ms is not None:
        completed_at = started_at + dt.timedelta(milliseconds=duration_ms)
    row = IntegrationSyncLog(
        id=log_id,
        integration_id=integration_id,
        status=status,
        started_at=started_at,
        completed_at=completed_at,
        items_processed=items_processed,
        error_message=error_message,
    )
    session.add(row)
    session.commit()
    return row
