"""Deal repository -- async CRUD for deals, services and payment schedules.

Provides DealRepository with the session_factory callable pattern: the
factory is an async generator yielding AsyncSession instances (normally
core.database.get_session). Handles conversion between SQLAlchemy models and
the Deal aggregate schema.

Every method is scoped to the owning user; a deal that belongs to someone
else is indistinguishable from one that does not exist.

Updating a deal's services or payment schedules replaces the whole
collection: existing rows are deleted and the supplied ones inserted.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.autosettle.deals.models import DealModel, PaymentScheduleModel, ServiceModel
from src.autosettle.deals.schemas import (
    Deal,
    DealCreate,
    DealFilter,
    DealUpdate,
    PaymentSchedule,
    PaymentScheduleCreate,
    Service,
    ServiceCreate,
)

logger = structlog.get_logger(__name__)

# Explicit nulls for these are ignored on update rather than stored
_NON_NULLABLE_FIELDS = frozenset({"company_name", "status", "contact_info", "checklists"})


class DealNotFoundError(LookupError):
    """Raised when a deal does not exist or is not owned by the caller."""

    def __init__(self, deal_id: str) -> None:
        self.deal_id = deal_id
        super().__init__(f"Deal not found: {deal_id}")


# ── Serialization Helpers ───────────────────────────────────────────────────


def _parse_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _model_to_service(model: ServiceModel) -> Service:
    return Service(
        id=str(model.id),
        deal_id=str(model.deal_id),
        type=model.type,
        details=model.details or {},
    )


def _model_to_payment_schedule(model: PaymentScheduleModel) -> PaymentSchedule:
    return PaymentSchedule(
        id=str(model.id),
        deal_id=str(model.deal_id),
        due_date=model.due_date,
        amount=model.amount,
        description=model.description,
        is_paid=model.is_paid,
    )


def _model_to_deal(model: DealModel) -> Deal:
    """Convert DealModel (with relationships loaded) to the Deal aggregate."""
    return Deal(
        id=str(model.id),
        user_id=str(model.user_id),
        company_name=model.company_name,
        manager_name=model.manager_name,
        contact_info=model.contact_info or {},
        status=model.status,
        memo=model.memo,
        checklists=model.checklists or {},
        services=[_model_to_service(s) for s in model.services],
        payment_schedules=[_model_to_payment_schedule(p) for p in model.payment_schedules],
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _service_model(data: ServiceCreate) -> ServiceModel:
    return ServiceModel(type=data.type.value, details=data.normalized_details())


def _payment_schedule_model(data: PaymentScheduleCreate) -> PaymentScheduleModel:
    return PaymentScheduleModel(
        due_date=data.due_date,
        amount=data.amount,
        description=data.description,
        is_paid=data.is_paid,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class DealRepository:
    """Async CRUD for the Deal aggregate.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    @staticmethod
    async def _load(
        session: AsyncSession, user_id: str, deal_id: str
    ) -> DealModel | None:
        deal_uuid = _parse_uuid(deal_id)
        user_uuid = _parse_uuid(user_id)
        if deal_uuid is None or user_uuid is None:
            return None
        stmt = (
            select(DealModel)
            .where(DealModel.id == deal_uuid, DealModel.user_id == user_uuid)
            .options(
                selectinload(DealModel.services),
                selectinload(DealModel.payment_schedules),
            )
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_deal(self, user_id: str, data: DealCreate) -> Deal:
        """Create a deal together with its services and payment schedules."""
        async for session in self._session_factory():
            model = DealModel(
                id=uuid.uuid4(),
                user_id=uuid.UUID(user_id),
                company_name=data.company_name,
                manager_name=data.manager_name,
                contact_info=data.contact_info.model_dump(),
                status=data.status.value,
                memo=data.memo,
                checklists=data.checklists.model_dump(),
                services=[_service_model(s) for s in data.services],
                payment_schedules=[_payment_schedule_model(p) for p in data.payment_schedules],
            )
            session.add(model)
            await session.commit()
            created = await self._load(session, user_id, str(model.id))
            logger.info(
                "deal_created",
                deal_id=str(model.id),
                services=len(data.services),
                payment_schedules=len(data.payment_schedules),
            )
            return _model_to_deal(created)

    async def get_deal(self, user_id: str, deal_id: str) -> Deal | None:
        """Get a deal with its services and payment schedules, or None."""
        async for session in self._session_factory():
            model = await self._load(session, user_id, deal_id)
            if model is None:
                return None
            return _model_to_deal(model)

    async def list_deals(
        self, user_id: str, filters: DealFilter | None = None
    ) -> list[Deal]:
        """List the user's deals, newest first."""
        user_uuid = _parse_uuid(user_id)
        if user_uuid is None:
            return []
        async for session in self._session_factory():
            stmt = (
                select(DealModel)
                .where(DealModel.user_id == user_uuid)
                .options(
                    selectinload(DealModel.services),
                    selectinload(DealModel.payment_schedules),
                )
                .order_by(DealModel.created_at.desc())
            )
            if filters and filters.status:
                stmt = stmt.where(DealModel.status == filters.status.value)
            result = await session.execute(stmt)
            return [_model_to_deal(m) for m in result.scalars().all()]

    async def update_deal(
        self, user_id: str, deal_id: str, data: DealUpdate
    ) -> Deal:
        """Patch scalar fields; replace services/payment schedules when supplied.

        Raises:
            DealNotFoundError: If the deal does not exist for this user.
        """
        async for session in self._session_factory():
            model = await self._load(session, user_id, deal_id)
            if model is None:
                raise DealNotFoundError(deal_id)

            fields = data.model_dump(
                mode="json",
                exclude_unset=True,
                exclude={"services", "payment_schedules"},
            )
            for key, value in fields.items():
                if value is None and key in _NON_NULLABLE_FIELDS:
                    continue
                setattr(model, key, value)

            if data.services is not None:
                model.services = [_service_model(s) for s in data.services]
            if data.payment_schedules is not None:
                model.payment_schedules = [
                    _payment_schedule_model(p) for p in data.payment_schedules
                ]

            await session.commit()
            updated = await self._load(session, user_id, deal_id)
            logger.info(
                "deal_updated",
                deal_id=deal_id,
                fields=sorted(fields),
                services_replaced=data.services is not None,
                payment_schedules_replaced=data.payment_schedules is not None,
            )
            return _model_to_deal(updated)

    async def delete_deal(self, user_id: str, deal_id: str) -> None:
        """Delete a deal; its services and payment schedules go with it.

        Raises:
            DealNotFoundError: If the deal does not exist for this user.
        """
        async for session in self._session_factory():
            model = await self._load(session, user_id, deal_id)
            if model is None:
                raise DealNotFoundError(deal_id)
            await session.delete(model)
            await session.commit()
            logger.info("deal_deleted", deal_id=deal_id)

    async def add_service(
        self, user_id: str, deal_id: str, data: ServiceCreate
    ) -> Service:
        """Attach one service to an existing deal.

        Raises:
            DealNotFoundError: If the deal does not exist for this user.
        """
        async for session in self._session_factory():
            deal = await self._load(session, user_id, deal_id)
            if deal is None:
                raise DealNotFoundError(deal_id)
            model = _service_model(data)
            model.deal_id = deal.id
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_service(model)

    async def add_payment_schedule(
        self, user_id: str, deal_id: str, data: PaymentScheduleCreate
    ) -> PaymentSchedule:
        """Attach one payment schedule entry to an existing deal.

        Raises:
            DealNotFoundError: If the deal does not exist for this user.
        """
        async for session in self._session_factory():
            deal = await self._load(session, user_id, deal_id)
            if deal is None:
                raise DealNotFoundError(deal_id)
            model = _payment_schedule_model(data)
            model.deal_id = deal.id
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_payment_schedule(model)
