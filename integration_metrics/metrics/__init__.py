"""
Integration telemetry: event model, Redis hot tier, aggregation and retention.

Only the leaf modules are re-exported here; import the aggregator and the
retention sweeper from their own modules.
"""

from .events import (
    EventMetadata,
    EventStatus,
    IntegrationEvent,
    api_call_event,
    build_event,
    rate_limit_event,
    sync_operation_event,
    webhook_event,
)
from .hot_store import AggregateCounter, CounterBucket, HotCounterStore, Scope

__all__ = [
    "AggregateCounter",
    "CounterBucket",
    "EventMetadata",
    "EventStatus",
    "HotCounterStore",
    "IntegrationEvent",
    "Scope",
    "api_call_event",
    "build_event",
    "rate_limit_event",
    "sync_operation_event",
    "webhook_event",
]
