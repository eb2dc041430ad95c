"""Initial schema: organizations, profiles, customers, tickets, messages,
templates, notifications, AI settings and AI runs.

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _org_id() -> sa.Column:
    return sa.Column("org_id", UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    op.create_table(
        "organizations",
        _id(),
        sa.Column("name", sa.String(200), nullable=False),
        _created_at(),
    )

    op.create_table(
        "profiles",
        sa.Column("user_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("current_org_id", UUID(as_uuid=True), sa.ForeignKey("organizations.id")),
        _created_at(),
    )

    op.create_table(
        "customers",
        _id(),
        _org_id(),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("orders", sa.Integer, nullable=False, server_default="0"),
        sa.Column("ltv", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("last_ticket_at", sa.DateTime(timezone=True)),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("org_id", "email", name="uq_customers_org_email"),
        sa.CheckConstraint("orders >= 0", name="ck_customers_orders"),
        sa.CheckConstraint("ltv >= 0", name="ck_customers_ltv"),
    )
    op.create_index("idx_customers_org_name", "customers", ["org_id", "name", "id"])
    op.create_index("idx_customers_org_updated", "customers", ["org_id", "updated_at", "id"])
    op.create_index("idx_customers_org_created", "customers", ["org_id", "created_at", "id"])
    op.create_index("idx_customers_org_ltv", "customers", ["org_id", "ltv", "id"])

    op.create_table(
        "tickets",
        _id(),
        _org_id(),
        sa.Column("ticket_number", sa.String(20), nullable=False),
        sa.Column(
            "customer_id",
            UUID(as_uuid=True),
            sa.ForeignKey("customers.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("subject", sa.String(200), nullable=False),
        sa.Column("excerpt", sa.Text, nullable=False, server_default=""),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("priority", sa.String(10), nullable=False, server_default="medium"),
        sa.Column("status", sa.String(10), nullable=False, server_default="open"),
        sa.Column("ai_status", sa.String(20)),
        sa.Column("latest_run_id", UUID(as_uuid=True)),
        sa.Column("confidence", sa.Float),
        sa.Column("sentiment", sa.Float),
        sa.Column("draft_response", sa.Text),
        sa.Column("draft_updated_at", sa.DateTime(timezone=True)),
        sa.Column("archived_at", sa.DateTime(timezone=True)),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("org_id", "ticket_number", name="uq_tickets_org_number"),
        sa.CheckConstraint(
            "category IN ('refund', 'shipping', 'product', 'billing', 'general')", name="ck_tickets_category"
        ),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high')", name="ck_tickets_priority"),
        sa.CheckConstraint("status IN ('open', 'resolved')", name="ck_tickets_status"),
    )
    op.create_index("idx_tickets_org_updated", "tickets", ["org_id", "updated_at", "id"])
    op.create_index("idx_tickets_org_created", "tickets", ["org_id", "created_at", "id"])
    op.create_index("idx_tickets_customer", "tickets", ["customer_id"])

    op.create_table(
        "ticket_messages",
        _id(),
        _org_id(),
        sa.Column(
            "ticket_id", UUID(as_uuid=True), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("author_type", sa.String(20), nullable=False, server_default="agent"),
        sa.Column("author_name", sa.String(120)),
        sa.Column("content", sa.Text, nullable=False),
        _created_at(),
    )
    op.create_index(
        "idx_ticket_messages_ticket_created", "ticket_messages", ["org_id", "ticket_id", "created_at", "id"]
    )

    op.create_table(
        "response_templates",
        _id(),
        _org_id(),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("category", sa.String(60), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True)),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_templates_org_updated", "response_templates", ["org_id", "updated_at", "id"])
    op.create_index("idx_templates_org_created", "response_templates", ["org_id", "created_at", "id"])
    op.create_index("idx_templates_org_title", "response_templates", ["org_id", "title", "id"])

    op.create_table(
        "notifications",
        _id(),
        _org_id(),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("priority", sa.String(10), nullable=False, server_default="normal"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("ticket_id", UUID(as_uuid=True), sa.ForeignKey("tickets.id", ondelete="SET NULL")),
        sa.Column("read_at", sa.DateTime(timezone=True)),
        _created_at(),
    )
    op.create_index("idx_notifications_org_created", "notifications", ["org_id", "created_at", "id"])

    op.create_table(
        "ai_settings",
        _id(),
        sa.Column(
            "org_id", UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False, unique=True
        ),
        sa.Column("ai_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("auto_reply", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("learning_mode", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("confidence_threshold", sa.Integer, nullable=False, server_default="80"),
        sa.Column("max_response_length", sa.Integer, nullable=False, server_default="500"),
        sa.Column("tone_value", sa.Integer, nullable=False, server_default="50"),
        sa.Column("selected_persona", sa.String(20), nullable=False, server_default="professional"),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("confidence_threshold BETWEEN 0 AND 100", name="ck_ai_settings_confidence"),
        sa.CheckConstraint("max_response_length BETWEEN 50 AND 2000", name="ck_ai_settings_max_length"),
        sa.CheckConstraint("tone_value BETWEEN 0 AND 100", name="ck_ai_settings_tone"),
    )

    op.create_table(
        "ai_runs",
        _id(),
        _org_id(),
        sa.Column(
            "ticket_id", UUID(as_uuid=True), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("intent", sa.String(100)),
        sa.Column("urgency", sa.String(10)),
        sa.Column("confidence", sa.Float),
        sa.Column("sentiment", sa.Float),
        sa.Column("draft_response", sa.Text),
        sa.Column("error", sa.Text),
        _created_at(),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("finished_at", sa.DateTime(timezone=True)),
    )
    op.create_index("idx_ai_runs_ticket", "ai_runs", ["org_id", "ticket_id", "created_at"])
    op.create_index(
        "idx_ai_runs_status",
        "ai_runs",
        ["status"],
        postgresql_where=sa.text("status IN ('queued', 'running')"),
    )


def downgrade() -> None:
    op.drop_table("ai_runs")
    op.drop_table("ai_settings")
    op.drop_table("notifications")
    op.drop_table("response_templates")
    op.drop_table("ticket_messages")
    op.drop_table("tickets")
    op.drop_table("customers")
    op.drop_table("profiles")
    op.drop_table("organizations")
