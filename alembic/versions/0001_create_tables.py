"""Create notifications, notification_templates, user_preferences tables.

Revision ID: 0001
Revises: -
Create Date: 2026-10-16
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
        sa.Column("priority", sa.String(16), nullable=False, server_default="normal"),
        sa.Column("sender_id", sa.String(64), nullable=False),
        sa.Column("template_name", sa.String(128), nullable=True),
        sa.Column("pending_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("document", JSONB, nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("progress_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("version", sa.Integer, nullable=False),
    )
    op.create_index("ix_notifications_status", "notifications", ["status"])
    op.create_index("ix_notifications_sender_id", "notifications", ["sender_id"])
    op.create_index("ix_notifications_template_name", "notifications", ["template_name"])
    op.create_index("ix_notifications_scheduled_at", "notifications", ["scheduled_at"])
    op.create_index("ix_notifications_expires_at", "notifications", ["expires_at"])
    op.create_index("ix_notifications_progress_at", "notifications", ["progress_at"])

    op.create_table(
        "notification_templates",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("document", JSONB, nullable=False),
        sa.Column("total_used", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_used", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "is_active",
            sa.Boolean,
            nullable=False,
            server_default=sa.text("true"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("name", name="uq_notification_templates_name"),
    )
    op.create_index("ix_notification_templates_type", "notification_templates", ["type"])
    op.create_index(
        "ix_notification_templates_category", "notification_templates", ["category"]
    )
    op.create_index(
        "ix_notification_templates_is_active", "notification_templates", ["is_active"]
    )

    op.create_table(
        "user_preferences",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("channels", JSONB, nullable=False),
    )


def downgrade() -> None:
    op.drop_table("user_preferences")
    op.drop_index("ix_notification_templates_is_active", table_name="notification_templates")
    op.drop_index("ix_notification_templates_category", table_name="notification_templates")
    op.drop_index("ix_notification_templates_type", table_name="notification_templates")
    op.drop_table("notification_templates")
    op.drop_index("ix_notifications_progress_at", table_name="notifications")
    op.drop_index("ix_notifications_expires_at", table_name="notifications")
    op.drop_index("ix_notifications_scheduled_at", table_name="notifications")
    op.drop_index("ix_notifications_template_name", table_name="notifications")
    op.drop_index("ix_notifications_sender_id", table_name="notifications")
    op.drop_index("ix_notifications_status", table_name="notifications")
    op.drop_table("notifications")
