"""Deal persistence models.

Three SQLAlchemy models:
- DealModel: A contract/opportunity owned by a user
- ServiceModel: A line item of work on a deal (type + JSON details)
- PaymentScheduleModel: An expected or received payment on a deal

Services and payment schedules are owned by their deal: they are removed
with it (ON DELETE CASCADE plus delete-orphan on the relationships).
Payment amounts are BIGINT so no money ever passes through a float.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.autosettle.core.database import Base


class DealModel(Base):
    """Contract or sales opportunity with a customer organization."""

    __tablename__ = "deals"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    company_name: Mapped[str] = mapped_column(String(300), nullable=False)
    manager_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    contact_info: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    status: Mapped[str] = mapped_column(
        String(20), default="PROSPECT", server_default=text("'PROSPECT'"), index=True
    )
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)
    checklists: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )

    services: Mapped[list[ServiceModel]] = relationship(
        back_populates="deal",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="ServiceModel.created_at",
    )
    payment_schedules: Mapped[list[PaymentScheduleModel]] = relationship(
        back_populates="deal",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="PaymentScheduleModel.due_date",
    )


class ServiceModel(Base):
    """Line item of work; ``details`` shape depends on ``type``."""

    __tablename__ = "services"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    deal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("deals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    details: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    deal: Mapped[DealModel] = relationship(back_populates="services")


class PaymentScheduleModel(Base):
    """Expected or received payment."""

    __tablename__ = "payment_schedules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    deal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("deals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_paid: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    deal: Mapped[DealModel] = relationship(back_populates="payment_schedules")
