"""Initial alerting schema

Revision ID: 3f1a7c9e2b40
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op  # type: ignore

# revision identifiers, used by Alembic.
revision: str = "3f1a7c9e2b40"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _base_columns() -> list:
    return [
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "sources",
        *_base_columns(),
        sa.Column("adapter_key", sa.String(128), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("last_polled_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "regions",
        *_base_columns(),
        sa.Column("source_id", sa.String(36), sa.ForeignKey("sources.id"), nullable=False),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.UniqueConstraint("source_id", "key", name="uq_regions_source_key"),
    )

    op.create_table(
        "institutions",
        *_base_columns(),
        sa.Column("source_id", sa.String(36), sa.ForeignKey("sources.id"), nullable=False),
        sa.Column("region_id", sa.String(36), sa.ForeignKey("regions.id"), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.UniqueConstraint("source_id", "code", name="uq_institutions_source_code"),
    )
    op.create_index(
        "idx_institutions_source_region", "institutions", ["source_id", "region_id"]
    )

    op.create_table(
        "current_reserves",
        *_base_columns(),
        sa.Column("source_id", sa.String(36), sa.ForeignKey("sources.id"), nullable=False),
        sa.Column("region_id", sa.String(36), sa.ForeignKey("regions.id"), nullable=False),
        sa.Column("category_key", sa.String(128), nullable=False),
        sa.Column("value", sa.Numeric(14, 2), nullable=True),
        sa.Column("unit", sa.String(32), nullable=False),
        sa.Column("status_key", sa.String(32), nullable=True),
        sa.Column("status_label", sa.String(64), nullable=True),
        sa.Column("reference_date", sa.Date(), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "source_id",
            "region_id",
            "category_key",
            name="uq_current_reserves_source_region_category",
        ),
    )
    op.create_index(
        "idx_current_reserves_source_captured",
        "current_reserves",
        ["source_id", "captured_at"],
    )

    op.create_table(
        "events",
        *_base_columns(),
        sa.Column("source_id", sa.String(36), sa.ForeignKey("sources.id"), nullable=False),
        sa.Column("region_id", sa.String(36), sa.ForeignKey("regions.id"), nullable=True),
        sa.Column(
            "current_reserve_id",
            sa.String(36),
            sa.ForeignKey("current_reserves.id"),
            nullable=False,
        ),
        sa.Column("rule_key", sa.String(128), nullable=False),
        sa.Column("category_key", sa.String(128), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("idempotency_key", sa.String(64), nullable=False, unique=True),
    )
    op.create_index("idx_events_current_reserve", "events", ["current_reserve_id"])
    op.create_index("idx_events_source_created", "events", ["source_id", "created_at"])

    op.create_table(
        "subscriptions",
        *_base_columns(),
        sa.Column("source_id", sa.String(36), sa.ForeignKey("sources.id"), nullable=False),
        sa.Column("type_key", sa.String(64), nullable=False),
        sa.Column("target", sa.String(1024), nullable=False),
        sa.Column("scope_type", sa.String(32), nullable=False),
        sa.Column("region_filter", sa.String(128), nullable=True),
        sa.Column(
            "institution_id",
            sa.String(36),
            sa.ForeignKey("institutions.id"),
            nullable=True,
        ),
        sa.Column("category_filter", sa.String(128), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False),
        sa.Column("disabled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "idx_subscriptions_source_enabled", "subscriptions", ["source_id", "is_enabled"]
    )
    op.create_index(
        "idx_subscriptions_scope",
        "subscriptions",
        [
            "source_id",
            "scope_type",
            "region_filter",
            "institution_id",
            "category_filter",
            "is_enabled",
        ],
    )

    op.create_table(
        "deliveries",
        *_base_columns(),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id"), nullable=False),
        sa.Column(
            "subscription_id",
            sa.String(36),
            sa.ForeignKey("subscriptions.id"),
            nullable=False,
        ),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "event_id", "subscription_id", name="uq_deliveries_event_subscription"
        ),
    )
    op.create_index("idx_deliveries_event_status", "deliveries", ["event_id", "status"])
    op.create_index(
        "idx_deliveries_subscription_created",
        "deliveries",
        ["subscription_id", "created_at"],
    )

    op.create_table(
        "subscription_notification_states",
        *_base_columns(),
        sa.Column(
            "subscription_id",
            sa.String(36),
            sa.ForeignKey("subscriptions.id"),
            nullable=False,
        ),
        sa.Column("region_id", sa.String(36), sa.ForeignKey("regions.id"), nullable=False),
        sa.Column("category_key", sa.String(128), nullable=False),
        sa.Column("rule_key", sa.String(128), nullable=False),
        sa.Column("is_open", sa.Boolean(), nullable=False),
        sa.Column("last_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_notified_bucket", sa.Integer(), nullable=True),
        sa.Column("last_notified_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("last_recovery_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "subscription_id",
            "region_id",
            "category_key",
            "rule_key",
            name="uq_notification_states_scope",
        ),
    )


def downgrade() -> None:
    op.drop_table("subscription_notification_states")
    op.drop_index("idx_deliveries_subscription_created", table_name="deliveries")
    op.drop_index("idx_deliveries_event_status", table_name="deliveries")
    op.drop_table("deliveries")
    op.drop_index("idx_subscriptions_scope", table_name="subscriptions")
    op.drop_index("idx_subscriptions_source_enabled", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("idx_events_source_created", table_name="events")
    op.drop_index("idx_events_current_reserve", table_name="events")
    op.drop_table("events")
    op.drop_index("idx_current_reserves_source_captured", table_name="current_reserves")
    op.drop_table("current_reserves")
    op.drop_index("idx_institutions_source_region", table_name="institutions")
    op.drop_table("institutions")
    op.drop_table("regions")
    op.drop_table("sources")
