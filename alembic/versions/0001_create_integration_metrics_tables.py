"""Create users, integrations, sync logs and integration_events tables."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_create_integration_metrics_tables"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    ]


def upgrade() -> None:
    # ---- collaborator tables (read-only for the metrics engine) ----
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("TRUE")),
        *_timestamps(),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=False)
    op.create_index("ix_users_created_at", "users", ["created_at"], unique=False)

    op.create_table(
        "integrations",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column(
            "user_id",
            sa.String(length=64),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider", sa.String(length=64), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("TRUE")),
        sa.Column("connection_status", sa.String(length=12), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_integrations_user_id", "integrations", ["user_id"], unique=False)
    op.create_index("ix_integrations_provider", "integrations", ["provider"], unique=False)
    op.create_index("ix_integrations_provider_user", "integrations", ["provider", "user_id"], unique=False)
    op.create_index("ix_integrations_created_at", "integrations", ["created_at"], unique=False)

    op.create_table(
        "integration_sync_logs",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column(
            "integration_id",
            sa.String(length=64),
            sa.ForeignKey("integrations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(length=7), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("items_processed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_integration_sync_logs_integration_id", "integration_sync_logs", ["integration_id"], unique=False
    )
    op.create_index(
        "ix_integration_sync_logs_integration_started",
        "integration_sync_logs",
        ["integration_id", "started_at"],
        unique=False,
    )
    op.create_index(
        "ix_integration_sync_logs_status_started",
        "integration_sync_logs",
        ["status", "started_at"],
        unique=False,
    )
    op.create_index("ix_integration_sync_logs_created_at", "integration_sync_logs", ["created_at"], unique=False)

    # ---- cold-tier event log ----
    op.create_table(
        "integration_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("integration_id", sa.String(length=64), nullable=False),
        sa.Column("provider", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("duration_ms", sa.Float(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'"),
        ),
        *_timestamps(),
    )
    op.create_index("ix_integration_events_created_at", "integration_events", ["created_at"], unique=False)
    op.create_index(
        "ix_integration_events_provider_created", "integration_events", ["provider", "created_at"], unique=False
    )
    op.create_index(
        "ix_integration_events_status_created", "integration_events", ["status", "created_at"], unique=False
    )
    op.create_index(
        "ix_integration_events_integration_created",
        "integration_events",
        ["integration_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_integration_events_user_created", "integration_events", ["user_id", "created_at"], unique=False
    )


def downgrade() -> None:
    op.drop_table("integration_events")
    op.drop_table("integration_sync_logs")
    op.drop_table("integrations")
    op.drop_table("users")
