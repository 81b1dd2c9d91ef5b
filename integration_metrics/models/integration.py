from __future__ import annotations

import datetime as dt
import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, relationship

from .base import Base, TimestampMixin


class ConnectionStatus(str, enum.Enum):
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    ERROR = "ERROR"


class SyncStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class User(TimestampMixin, Base):
    """Integration owner. Only read by the metrics engine."""

    __tablename__ = "users"

    id: Mapped[str] = Column(String(64), primary_key=True)
    email: Mapped[str] = Column(String(255), unique=True, nullable=False, index=True)
    is_active: Mapped[bool] = Column(Boolean, server_default=text("TRUE"), nullable=False)

    integrations: Mapped[list["Integration"]] = relationship(
        "Integration",
        back_populates="user",
        cascade="all, delete-orphan",
    )


class Integration(TimestampMixin, Base):
    """A user's connection to one third-party provider."""

    __tablename__ = "integrations"
    __table_args__ = (Index("ix_integrations_provider_user", "provider", "user_id"),)

    id: Mapped[str] = Column(String(64), primary_key=True)
    user_id: Mapped[str] = Column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider: Mapped[str] = Column(String(64), nullable=False, index=True)
    enabled: Mapped[bool] = Column(Boolean, server_default=text("TRUE"), nullable=False)
    connection_status: Mapped[ConnectionStatus] = Column(
        Enum(ConnectionStatus, name="integration_connection_status", native_enum=False),
        nullable=False,
        default=ConnectionStatus.DISCONNECTED,
    )

    user: Mapped[User] = relationship("User", back_populates="integrations")
    sync_logs: Mapped[list["IntegrationSyncLog"]] = relationship(
        "IntegrationSyncLog",
        back_populates="integration",
        cascade="all, delete-orphan",
    )


class IntegrationSyncLog(TimestampMixin, Base):
    """
    One sync run of an integration.

    RUNNING rows have no completed_at yet and stay out of duration averages.
    """

    __tablename__ = "integration_sync_logs"
    __table_args__ = (
        Index("ix_integration_sync_logs_integration_started", "integration_id", "started_at"),
        Index("ix_integration_sync_logs_status_started", "status", "started_at"),
    )

    id: Mapped[str] = Column(String(64), primary_key=True)
    integration_id: Mapped[str] = Column(
        String(64),
        ForeignKey("integrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[SyncStatus] = Column(
        Enum(SyncStatus, name="integration_sync_status", native_enum=False),
        nullable=False,
    )
    started_at: Mapped[dt.datetime] = Column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[dt.datetime | None] = Column(DateTime(timezone=True), nullable=True)
    items_processed: Mapped[int] = Column(Integer, nullable=False, server_default=text("0"))
    error_message: Mapped[str | None] = Column(Text, nullable=True)

    integration: Mapped[Integration] = relationship("Integration", back_populates="sync_logs")


__all__ = [
    "ConnectionStatus",
    "Integration",
    "IntegrationSyncLog",
    "SyncStatus",
    "User",
]
