"""create outbound gateway tables

Revision ID: 20261019_01
Revises: None
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "outbound_envelopes",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("message_type", sa.String(length=32), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("media_url", sa.Text(), nullable=True),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("priority", sa.String(length=8), nullable=False, server_default="normal"),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("provider_message_id", sa.String(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'sent', 'failed', 'rate_limited')",
            name="ck_outbound_envelopes_status",
        ),
        sa.CheckConstraint(
            "priority IN ('low', 'normal', 'high')",
            name="ck_outbound_envelopes_priority",
        ),
    )
    op.create_index("ix_outbound_envelopes_user_id", "outbound_envelopes", ["user_id"])
    op.create_index(
        "ix_outbound_envelopes_status_scheduled",
        "outbound_envelopes",
        ["status", "scheduled_for"],
    )

    op.create_table(
        "gateway_sessions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("conversation_context", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_activity", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    # At most one active session per (user, channel)
    op.create_index(
        "uq_gateway_sessions_active",
        "gateway_sessions",
        ["user_id", "channel"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "proactive_audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("envelope_id", sa.String(length=36), nullable=True),
        sa.Column("job_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("message_preview", sa.Text(), nullable=True),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_proactive_audit_log_user_id", "proactive_audit_log", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_proactive_audit_log_user_id", table_name="proactive_audit_log")
    op.drop_table("proactive_audit_log")
    op.drop_index("uq_gateway_sessions_active", table_name="gateway_sessions")
    op.drop_table("gateway_sessions")
    op.drop_index("ix_outbound_envelopes_status_scheduled", table_name="outbound_envelopes")
    op.drop_index("ix_outbound_envelopes_user_id", table_name="outbound_envelopes")
    op.drop_table("outbound_envelopes")
