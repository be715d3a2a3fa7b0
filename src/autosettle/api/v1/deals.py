"""REST API endpoints for the deal desk.

Provides CRUD endpoints for deals, their services and payment schedules,
plus the dashboard KPIs. Every deal returned carries a ``summary`` with its
quote, paid and outstanding amounts and the recommended next action. All
endpoints require authentication and only ever see the caller's own deals.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.autosettle.api.deps import (
    get_current_user,
    get_deal_repository,
    get_next_action_resolver,
)
from src.autosettle.core.monitoring import record_next_action
from src.autosettle.deals.dashboard import (
    DashboardKPIs,
    DealSummary,
    compute_dashboard,
    summarize_deal,
)
from src.autosettle.deals.next_action import NextActionResolver
from src.autosettle.deals.repository import DealNotFoundError
from src.autosettle.deals.schemas import (
    Checklist,
    ContactInfo,
    Deal,
    DealCreate,
    DealFilter,
    DealStatus,
    DealUpdate,
    PaymentSchedule,
    PaymentScheduleCreate,
    Service,
    ServiceCreate,
)
from src.autosettle.models.user import User

router = APIRouter(prefix="/api/v1/deals", tags=["deals"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class DealResponse(BaseModel):
    """Deal with its services, payment schedule and computed summary."""

    id: str
    company_name: str
    manager_name: str | None = None
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    status: DealStatus
    memo: str | None = None
    checklists: Checklist = Field(default_factory=Checklist)
    services: list[Service] = Field(default_factory=list)
    payment_schedules: list[PaymentSchedule] = Field(default_factory=list)
    summary: DealSummary
    created_at: str | None = None
    updated_at: str | None = None


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _deal_to_response(
    deal: Deal, now: datetime, resolver: NextActionResolver
) -> DealResponse:
    """Convert a Deal aggregate to DealResponse, computing its summary."""
    summary = summarize_deal(deal, now=now, resolver=resolver)
    record_next_action(summary.next_action.name if summary.next_action else None)
    return DealResponse(
        id=deal.id,
        company_name=deal.company_name,
        manager_name=deal.manager_name,
        contact_info=deal.contact_info,
        status=deal.status,
        memo=deal.memo,
        checklists=deal.checklists,
        services=deal.services,
        payment_schedules=deal.payment_schedules,
        summary=summary,
        created_at=deal.created_at.isoformat() if deal.created_at else None,
        updated_at=deal.updated_at.isoformat() if deal.updated_at else None,
    )


def _not_found(deal_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Deal not found: {deal_id}",
    )


# ── Deal Endpoints ───────────────────────────────────────────────────────────


@router.get("", response_model=list[DealResponse])
async def list_deals(
    deal_status: DealStatus | None = Query(default=None, alias="status"),
    user: User = Depends(get_current_user),
    repo: Any = Depends(get_deal_repository),
    resolver: NextActionResolver = Depends(get_next_action_resolver),
) -> list[DealResponse]:
    """List the caller's deals, newest first, optionally filtered by status."""
    deals = await repo.list_deals(str(user.id), DealFilter(status=deal_status))
    now = datetime.now(timezone.utc)
    return [_deal_to_response(d, now, resolver) for d in deals]


@router.post("", response_model=DealResponse, status_code=201)
async def create_deal(
    body: DealCreate,
    user: User = Depends(get_current_user),
    repo: Any = Depends(get_deal_repository),
    resolver: NextActionResolver = Depends(get_next_action_resolver),
) -> DealResponse:
    """Create a deal with its services and payment schedule."""
    deal = await repo.create_deal(str(user.id), body)
    return _deal_to_response(deal, datetime.now(timezone.utc), resolver)


@router.get("/dashboard", response_model=DashboardKPIs)
async def get_dashboard(
    user: User = Depends(get_current_user),
    repo: Any = Depends(get_deal_repository),
    resolver: NextActionResolver = Depends(get_next_action_resolver),
) -> DashboardKPIs:
    """Revenue, outstanding balance and deal counts across the caller's deals."""
    deals = await repo.list_deals(str(user.id))
    return compute_dashboard(deals, resolver=resolver)


@router.get("/{deal_id}", response_model=DealResponse)
async def get_deal(
    deal_id: str,
    user: User = Depends(get_current_user),
    repo: Any = Depends(get_deal_repository),
    resolver: NextActionResolver = Depends(get_next_action_resolver),
) -> DealResponse:
    """Get one deal with its summary."""
    deal = await repo.get_deal(str(user.id), deal_id)
    if deal is None:
        raise _not_found(deal_id)
    return _deal_to_response(deal, datetime.now(timezone.utc), resolver)


@router.patch("/{deal_id}", response_model=DealResponse)
async def update_deal(
    deal_id: str,
    body: DealUpdate,
    user: User = Depends(get_current_user),
    repo: Any = Depends(get_deal_repository),
    resolver: NextActionResolver = Depends(get_next_action_resolver),
) -> DealResponse:
    """Update a deal. Supplied services / payment schedules replace the old ones."""
    try:
        deal = await repo.update_deal(str(user.id), deal_id, body)
    except DealNotFoundError:
        raise _not_found(deal_id)
    return _deal_to_response(deal, datetime.now(timezone.utc), resolver)


@router.delete("/{deal_id}", status_code=204)
async def delete_deal(
    deal_id: str,
    user: User = Depends(get_current_user),
    repo: Any = Depends(get_deal_repository),
) -> None:
    """Delete a deal together with its services and payment schedules."""
    try:
        await repo.delete_deal(str(user.id), deal_id)
    except DealNotFoundError:
        raise _not_found(deal_id)


# ── Service / Payment Schedule Endpoints ─────────────────────────────────────


@router.post("/{deal_id}/services", response_model=Service, status_code=201)
async def add_service(
    deal_id: str,
    body: ServiceCreate,
    user: User = Depends(get_current_user),
    repo: Any = Depends(get_deal_repository),
) -> Service:
    """Attach a service to a deal."""
    try:
        return await repo.add_service(str(user.id), deal_id, body)
    except DealNotFoundError:
        raise _not_found(deal_id)


@router.post(
    "/{deal_id}/payment-schedules",
    response_model=PaymentSchedule,
    status_code=201,
)
async def add_payment_schedule(
    deal_id: str,
    body: PaymentScheduleCreate,
    user: User = Depends(get_current_user),
    repo: Any = Depends(get_deal_repository),
) -> PaymentSchedule:
    """Attach a payment schedule entry to a deal."""
    try:
        return await repo.add_payment_schedule(str(user.id), deal_id, body)
    except DealNotFoundError:
        raise _not_found(deal_id)
