"""
Redis-backed hot tier: per-minute counter buckets and per-day rollups.

Key layout
----------
- counter bucket: ``metrics:{kind}:{id}:{bucket}`` (``metrics:global:{bucket}``)
  fields requests / successes / errors / rate_limited / total_duration,
  TTL ``METRICS_HOT_TTL_SECONDS``;
- daily rollup: ``agg:{kind}:{id}:{YYYY-MM-DD}`` (``agg:global:{YYYY-MM-DD}``)
  fields total / success / error / rate_limited / total_duration,
  TTL ``METRICS_ROLLUP_TTL_DAYS``.

The request counter and the status counter of a key are always bumped in the
same MULTI/EXEC, so ``requests == successes + errors + rate_limited`` holds
for every hash a reader can observe.

This module never swallows Redis errors; callers decide whether a failure is
absorbed (write path) or surfaced (read path).
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from redis.asyncio import Redis

from integration_metrics.logging_config import logger

from .events import EventStatus, IntegrationEvent

SCOPE_PROVIDER = "provider"
SCOPE_USER = "user"
SCOPE_INTEGRATION = "integration"
SCOPE_GLOBAL = "global"
SCOPE_KINDS = (SCOPE_PROVIDER, SCOPE_USER, SCOPE_INTEGRATION, SCOPE_GLOBAL)

_COUNTER_FIELD = {
    EventStatus.SUCCESS: "successes",
    EventStatus.ERROR: "errors",
    EventStatus.RATE_LIMITED: "rate_limited",
}
_ROLLUP_FIELD = {
    EventStatus.SUCCESS: "success",
    EventStatus.ERROR: "error",
    EventStatus.RATE_LIMITED: "rate_limited",
}


@dataclass(frozen=True)
class Scope:
    kind: str
    identifier: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in SCOPE_KINDS:
            raise ValueError(f"unknown scope kind {self.kind!r}")
        if self.kind == SCOPE_GLOBAL:
            object.__setattr__(self, "identifier", None)
        elif not self.identifier:
            raise ValueError(f"scope {self.kind!r} requires an identifier")

    @classmethod
    def provider(cls, provider: str) -> "Scope":
        return cls(SCOPE_PROVIDER, provider)

    @classmethod
    def user(cls, user_id: str) -> "Scope":
        return cls(SCOPE_USER, user_id)

    @classmethod
    def integration(cls, integration_id: str) -> "Scope":
        return cls(SCOPE_INTEGRATION, integration_id)

    @classmethod
    def global_(cls) -> "Scope":
        return cls(SCOPE_GLOBAL)

    @property
    def key_part(self) -> str:
        if self.kind == SCOPE_GLOBAL:
            return SCOPE_GLOBAL
        return f"{self.kind}:{self.identifier}"

    def counter_key(self, bucket: int) -> str:
        return f"metrics:{self.key_part}:{bucket}"

    def rollup_key(self, day: dt.date) -> str:
        return f"agg:{self.key_part}:{day.isoformat()}"


def scopes_for(event: IntegrationEvent) -> tuple[Scope, ...]:
    return (
        Scope.provider(event.provider),
        Scope.user(event.user_id),
        Scope.integration(event.integration_id),
        Scope.global_(),
    )


def _int(raw: Mapping[str, str], name: str) -> int:
    value = raw.get(name)
    return int(value) if value else 0


def _float(raw: Mapping[str, str], name: str) -> float:
    value = raw.get(name)
    return float(value) if value else 0.0


@dataclass(frozen=True)
class CounterBucket:
    requests: int = 0
    successes: int = 0
    errors: int = 0
    rate_limited: int = 0
    total_duration: float = 0.0

    @classmethod
    def from_hash(cls, raw: Mapping[str, str] | None) -> "CounterBucket":
        if not raw:
            return cls()
        return cls(
            requests=_int(raw, "requests"),
            successes=_int(raw, "successes"),
            errors=_int(raw, "errors"),
            rate_limited=_int(raw, "rate_limited"),
            total_duration=_float(raw, "total_duration"),
        )

    def merge(self, other: "CounterBucket") -> "CounterBucket":
        return CounterBucket(
            requests=self.requests + other.requests,
            successes=self.successes + other.successes,
            errors=self.errors + other.errors,
            rate_limited=self.rate_limited + other.rate_limited,
            total_duration=self.total_duration + other.total_duration,
        )

    @classmethod
    def fold(cls, buckets: Iterable["CounterBucket"]) -> "CounterBucket":
        result = cls()
        for bucket in buckets:
            result = result.merge(bucket)
        return result

    @property
    def is_empty(self) -> bool:
        return self.requests == 0


@dataclass(frozen=True)
class AggregateCounter:
    day: dt.date
    total: int = 0
    success: int = 0
    error: int = 0
    rate_limited: int = 0
    total_duration: float = 0.0

    @classmethod
    def from_hash(cls, day: dt.date, raw: Mapping[str, str] | None) -> "AggregateCounter":
        if not raw:
            return cls(day=day)
        return cls(
            day=day,
            total=_int(raw, "total"),
            success=_int(raw, "success"),
            error=_int(raw, "error"),
            rate_limited=_int(raw, "rate_limited"),
            total_duration=_float(raw, "total_duration"),
        )


class HotCounterStore:
    def __init__(
        self,
        redis: Redis,
        *,
        ttl_seconds: int = 3600,
        rollup_ttl_seconds: int = 31 * 86400,
        max_buckets: int = 60,
    ) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.rollup_ttl_seconds = rollup_ttl_seconds
        self.max_buckets = max_buckets

    def _queue_increment(self, pipe, scope: Scope, event: IntegrationEvent) -> None:
        duration = event.duration_ms or 0.0

        counter_key = scope.counter_key(event.bucket)
        pipe.hincrby(counter_key, "requests", 1)
        pipe.hincrby(counter_key, _COUNTER_FIELD[event.status], 1)
        if duration:
            pipe.hincrbyfloat(counter_key, "total_duration", duration)
        pipe.expire(counter_key, self.ttl_seconds)

        rollup_key = scope.rollup_key(event.day)
        pipe.hincrby(rollup_key, "total", 1)
        pipe.hincrby(rollup_key, _ROLLUP_FIELD[event.status], 1)
        if duration:
            pipe.hincrbyfloat(rollup_key, "total_duration", duration)
        pipe.expire(rollup_key, self.rollup_ttl_seconds)

    async def increment(self, scope: Scope, event: IntegrationEvent) -> None:
        """Count one event against a single scope (bucket + daily rollup)."""
        pipe = self.redis.pipeline(transaction=True)
        self._queue_increment(pipe, scope, event)
        await pipe.execute()

    async def increment_all(self, event: IntegrationEvent) -> None:
        """
        Count one event against its provider, user, integration and global
        scopes in a single MULTI/EXEC: either every key moves or none does.
        """
        pipe = self.redis.pipeline(transaction=True)
        for scope in scopes_for(event):
            self._queue_increment(pipe, scope, event)
        await pipe.execute()

    async def read_bucket(self, scope: Scope, bucket: int) -> CounterBucket:
        raw = await self.redis.hgetall(scope.counter_key(bucket))
        return CounterBucket.from_hash(raw)

    async def read_range(self, scope: Scope, from_bucket: int, to_bucket: int) -> CounterBucket:
        """
        Fold the inclusive bucket range into one CounterBucket.

        At most ``max_buckets`` buckets are read; when the range is wider the
        newest ones are kept, older minutes are out of the hot horizon anyway.
        """
        if to_bucket < from_bucket:
            return CounterBucket()
        if to_bucket - from_bucket + 1 > self.max_buckets:
            logger.debug(
                "hot_store: clipping %s range [%s, %s] to %s buckets",
                scope.key_part,
                from_bucket,
                to_bucket,
                self.max_buckets,
            )
            from_bucket = to_bucket - self.max_buckets + 1

        pipe = self.redis.pipeline(transaction=False)
        for bucket in range(from_bucket, to_bucket + 1):
            pipe.hgetall(scope.counter_key(bucket))
        results = await pipe.execute()
        return CounterBucket.fold(CounterBucket.from_hash(raw) for raw in results)

    async def read_rollup(self, scope: Scope, day: dt.date) -> AggregateCounter:
        raw = await self.redis.hgetall(scope.rollup_key(day))
        return AggregateCounter.from_hash(day, raw)

    async def read_rollups(self, scope: Scope, days: Sequence[dt.date]) -> list[AggregateCounter]:
        if not days:
            return []
        pipe = self.redis.pipeline(transaction=False)
        for day in days:
            pipe.hgetall(scope.rollup_key(day))
        results = await pipe.execute()
        return [AggregateCounter.from_hash(day, raw) for day, raw in zip(days, results)]


__all__ = [
    "SCOPE_GLOBAL",
    "SCOPE_INTEGRATION",
    "SCOPE_KINDS",
    "SCOPE_PROVIDER",
    "SCOPE_USER",
    "AggregateCounter",
    "CounterBucket",
    "HotCounterStore",
    "Scope",
    "scopes_for",
]
