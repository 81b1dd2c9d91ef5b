from .event_log import DurableEventLog, ProviderStatusCount, StoredEvent, TopErrorRow
from .integration_directory import CountPair, IntegrationDirectory, IntegrationInfo, SyncLogEntry

__all__ = [
    "CountPair",
    "DurableEventLog",
    "IntegrationDirectory",
    "IntegrationInfo",
    "ProviderStatusCount",
    "StoredEvent",
    "SyncLogEntry",
    "TopErrorRow",
]
