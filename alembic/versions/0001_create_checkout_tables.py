"""create checkout tables

Revision ID: 0001_create_checkout_tables
Revises: 
Create Date: 2026-02-10 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_create_checkout_tables"
down_revision = None
branch_labels = None
depends_on = None


TIERS = ("starter", "growth", "pro_launch")


def _enum(*values: str, name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*values, name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    tier_enum = _enum(*TIERS, name="tier")
    order_status_enum = _enum("created", "paid", name="orderstatus")
    session_status_enum = _enum("pending", "paid", name="checkoutsessionstatus")
    webhook_source_enum = _enum("stripe", "cal", name="webhooksource")
    for enum_type in (tier_enum, order_status_enum, session_status_enum, webhook_source_enum):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "orders",
        sa.Column("order_uuid", sa.String(length=36), nullable=False),
        sa.Column("order_id", sa.String(length=255), nullable=False),
        sa.Column("status", order_status_enum, nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("tier_id", tier_enum, nullable=True),
        sa.Column("addon_ids", sa.JSON(), nullable=False),
        sa.Column("customer_email", sa.String(length=320), nullable=True),
        sa.Column("stripe_session_id", sa.String(length=255), nullable=True),
        sa.Column("email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("order_uuid"),
    )
    op.create_index(op.f("ix_orders_order_id"), "orders", ["order_id"], unique=True)
    op.create_index(op.f("ix_orders_status"), "orders", ["status"], unique=False)
    op.create_index(op.f("ix_orders_stripe_session_id"), "orders", ["stripe_session_id"], unique=False)

    op.create_table(
        "checkout_sessions",
        sa.Column("session_id", sa.String(length=255), nullable=False),
        sa.Column("order_id", sa.String(length=255), nullable=True),
        sa.Column("order_uuid", sa.String(length=36), nullable=True),
        sa.Column("tier_id", tier_enum, nullable=False),
        sa.Column("addon_ids", sa.JSON(), nullable=False),
        sa.Column("total", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("deposit", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("remaining", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("customer_email", sa.String(length=320), nullable=True),
        sa.Column("status", session_status_enum, nullable=False),
        sa.Column("live", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("session_id"),
    )
    op.create_index(op.f("ix_checkout_sessions_order_id"), "checkout_sessions", ["order_id"], unique=False)
    op.create_index(op.f("ix_checkout_sessions_order_uuid"), "checkout_sessions", ["order_uuid"], unique=False)

    op.create_table(
        "onboarding_submissions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("order_id", sa.String(length=255), nullable=False),
        sa.Column("config_json", sa.JSON(), nullable=False),
        sa.Column("asset_links", sa.JSON(), nullable=False),
        sa.Column("stripped_keys", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_onboarding_submissions_order_id"), "onboarding_submissions", ["order_id"], unique=True
    )

    op.create_table(
        "processed_webhook_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source", webhook_source_enum, nullable=False),
        sa.Column("event_key", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=128), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source", "event_key", name="uq_processed_webhook_events_source_key"),
    )

    op.create_table(
        "email_dispatches",
        sa.Column("order_id", sa.String(length=255), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("order_id"),
    )


def downgrade() -> None:
    op.drop_table("email_dispatches")
    op.drop_table("processed_webhook_events")
    op.drop_index(op.f("ix_onboarding_submissions_order_id"), table_name="onboarding_submissions")
    op.drop_table("onboarding_submissions")
    op.drop_index(op.f("ix_checkout_sessions_order_uuid"), table_name="checkout_sessions")
    op.drop_index(op.f("ix_checkout_sessions_order_id"), table_name="checkout_sessions")
    op.drop_table("checkout_sessions")
    op.drop_index(op.f("ix_orders_stripe_session_id"), table_name="orders")
    op.drop_index(op.f("ix_orders_status"), table_name="orders")
    op.drop_index(op.f("ix_orders_order_id"), table_name="orders")
    op.drop_table("orders")
    for enum_name in ("webhooksource", "checkoutsessionstatus", "tier", "orderstatus"):
        postgresql.ENUM(name=enum_name).drop(op.get_bind(), checkfirst=True)
