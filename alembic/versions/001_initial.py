"""Create users, deals, services and payment_schedules tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

- users: dashboard accounts (unique email)
- deals: contracts owned by a user, with JSON contact info and checklist
- services: line items of a deal, JSON details keyed by service type
- payment_schedules: expected or received payments (BIGINT amounts)

Services and payment schedules cascade-delete with their deal.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at_column() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # ── users table ─────────────────────────────────────────────────────

    op.create_table(
        "users",
        _id_column(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("hashed_password", sa.String(255), nullable=True),
        sa.Column(
            "is_active",
            sa.Boolean(),
            server_default=sa.text("true"),
            nullable=False,
        ),
        _created_at_column(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    # ── deals table ─────────────────────────────────────────────────────

    op.create_table(
        "deals",
        _id_column(),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_deals_user_id_users"),
            nullable=False,
        ),
        sa.Column("company_name", sa.String(300), nullable=False),
        sa.Column("manager_name", sa.String(200), nullable=True),
        sa.Column(
            "contact_info",
            sa.JSON(),
            server_default=sa.text("'{}'::json"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.String(20),
            server_default=sa.text("'PROSPECT'"),
            nullable=False,
        ),
        sa.Column("memo", sa.Text(), nullable=True),
        sa.Column(
            "checklists",
            sa.JSON(),
            server_default=sa.text("'{}'::json"),
            nullable=False,
        ),
        _created_at_column(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_deals_user_id", "deals", ["user_id"])
    op.create_index("ix_deals_status", "deals", ["status"])

    # ── services table ──────────────────────────────────────────────────

    op.create_table(
        "services",
        _id_column(),
        sa.Column(
            "deal_id",
            UUID(as_uuid=True),
            sa.ForeignKey("deals.id", ondelete="CASCADE", name="fk_services_deal_id_deals"),
            nullable=False,
        ),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column(
            "details",
            sa.JSON(),
            server_default=sa.text("'{}'::json"),
            nullable=False,
        ),
        _created_at_column(),
    )
    op.create_index("ix_services_deal_id", "services", ["deal_id"])

    # ── payment_schedules table ─────────────────────────────────────────

    op.create_table(
        "payment_schedules",
        _id_column(),
        sa.Column(
            "deal_id",
            UUID(as_uuid=True),
            sa.ForeignKey(
                "deals.id",
                ondelete="CASCADE",
                name="fk_payment_schedules_deal_id_deals",
            ),
            nullable=False,
        ),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "is_paid",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        _created_at_column(),
    )
    op.create_index("ix_payment_schedules_deal_id", "payment_schedules", ["deal_id"])


def downgrade() -> None:
    op.drop_index("ix_payment_schedules_deal_id", table_name="payment_schedules")
    op.drop_table("payment_schedules")
    op.drop_index("ix_services_deal_id", table_name="services")
    op.drop_table("services")
    op.drop_index("ix_deals_status", table_name="deals")
    op.drop_index("ix_deals_user_id", table_name="deals")
    op.drop_table("deals")
    op.drop_table("users")
