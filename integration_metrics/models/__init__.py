from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from .integration import ConnectionStatus, Integration, IntegrationSyncLog, SyncStatus, User
from .integration_event import IntegrationEventRecord

__all__ = [
    "Base",
    "ConnectionStatus",
    "Integration",
    "IntegrationEventRecord",
    "IntegrationSyncLog",
    "SyncStatus",
    "TimestampMixin",
    "User",
    "UUIDPrimaryKeyMixin",
]
