from __future__ import annotations

from sqlalchemy import Column, Float, Index, String, Text, text
from sqlalchemy.orm import Mapped

from integration_metrics.db.types import JSONBCompat

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class IntegrationEventRecord(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """
    Durable copy of one integration event (append-only).

    created_at is the time the event happened, not the insert time; cold-tier
    windows, top errors and retention all filter on it.
    """

    __tablename__ = "integration_events"
    __table_args__ = (
        Index("ix_integration_events_provider_created", "provider", "created_at"),
        Index("ix_integration_events_status_created", "status", "created_at"),
        Index("ix_integration_events_integration_created", "integration_id", "created_at"),
        Index("ix_integration_events_user_created", "user_id", "created_at"),
    )

    user_id: Mapped[str] = Column(String(64), nullable=False)
    integration_id: Mapped[str] = Column(String(64), nullable=False)
    provider: Mapped[str] = Column(String(64), nullable=False)
    action: Mapped[str] = Column(String(255), nullable=False)
    category: Mapped[str] = Column(String(16), nullable=False)
    status: Mapped[str] = Column(String(16), nullable=False)
    duration_ms: Mapped[float | None] = Column(Float, nullable=True)
    error_message: Mapped[str | None] = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes.
    metadata_json: Mapped[dict] = Column(
        "metadata",
        JSONBCompat(),
        nullable=False,
        server_default=text("'{}'"),
    )


__all__ = ["IntegrationEventRecord"]
