"""Dashboard aggregation -- per-deal summaries and portfolio KPIs.

Builds on deals.pricing and deals.next_action so the dashboard cards, the
deal grid rows and the detail view all show the same numbers.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from src.autosettle.deals.next_action import (
    NextAction,
    NextActionResolver,
    default_resolver,
)
from src.autosettle.deals.schemas import Deal, DealStatus


class DealSummary(BaseModel):
    """Financial position and recommended follow-up for one deal."""

    quote: int = 0
    total_paid: int = 0
    outstanding: int = 0
    next_action: NextAction | None = None


class DashboardKPIs(BaseModel):
    """Portfolio-level figures shown on the dashboard."""

    total_revenue: int = 0
    total_quote: int = 0
    outstanding: int = 0
    ongoing_deals: int = 0
    deal_count: int = 0
    status_counts: dict[str, int] = Field(default_factory=dict)
    action_counts: dict[str, int] = Field(default_factory=dict)


def summarize_deal(
    deal: Deal,
    *,
    now: datetime | None = None,
    resolver: NextActionResolver | None = None,
) -> DealSummary:
    """Compute quote, settlement and next action for a single deal."""
    resolver = resolver or default_resolver
    snapshot = resolver.snapshot(deal, deal.services, deal.payment_schedules, now)
    return DealSummary(
        quote=snapshot.quote,
        total_paid=snapshot.settlement.total_paid,
        outstanding=snapshot.outstanding,
        next_action=resolver.evaluate(snapshot),
    )


def compute_dashboard(
    deals: Iterable[Deal],
    *,
    now: datetime | None = None,
    resolver: NextActionResolver | None = None,
) -> DashboardKPIs:
    """Aggregate KPIs over a collection of deals.

    One ``now`` is captured for the whole batch so every deal is judged
    against the same instant.
    """
    now = now or datetime.now(timezone.utc)
    kpis = DashboardKPIs(status_counts={s.value: 0 for s in DealStatus})

    for deal in deals:
        summary = summarize_deal(deal, now=now, resolver=resolver)
        kpis.deal_count += 1
        kpis.total_quote += summary.quote
        kpis.total_revenue += summary.total_paid
        status = deal.status.value
        kpis.status_counts[status] = kpis.status_counts.get(status, 0) + 1
        if deal.status == DealStatus.ONGOING:
            kpis.ongoing_deals += 1
        if summary.next_action is not None:
            name = summary.next_action.name
            kpis.action_counts[name] = kpis.action_counts.get(name, 0) + 1

    kpis.outstanding = kpis.total_quote - kpis.total_revenue
    return kpis
