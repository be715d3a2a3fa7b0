"""Deal financials -- quote calculation and payment settlement.

The single home of the money formulas. The dashboard, deal listings, the
detail view and the next-action engine all call these functions rather
than recomputing totals themselves.

Per-service contribution to the quote:
- ACTIVITY: activity cost (price and count are ignored)
- ETC, REPORT: flat price (count is ignored)
- TEST, LECTURE, CONSULTING and unknown types: price * count

All amounts are exact integers. Nothing here raises on malformed input;
unusable numbers count as 0.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict

from src.autosettle.deals.schemas import (
    PaymentSchedule,
    Service,
    coerce_amount,
    parse_details,
)


class Settlement(BaseModel):
    """Paid and outstanding amounts for one quote.

    ``outstanding`` is negative when the customer has overpaid.
    """

    model_config = ConfigDict(frozen=True)

    total_paid: int
    outstanding: int


def service_total(service: Service | Mapping[str, Any]) -> int:
    """Contribution of one service to the deal quote."""
    if isinstance(service, Service):
        return service.details.line_total()
    if not isinstance(service, Mapping):
        return 0
    return parse_details(service.get("type"), service.get("details")).line_total()


def compute_quote(services: Iterable[Service | Mapping[str, Any]]) -> int:
    """Total quote of a deal: the sum of every service's contribution.

    Services of the same type are not merged; each one counts on its own.
    """
    return sum((service_total(s) for s in services), 0)


def _is_paid(entry: PaymentSchedule | Mapping[str, Any]) -> bool:
    if isinstance(entry, PaymentSchedule):
        return entry.is_paid
    if not isinstance(entry, Mapping):
        return False
    return entry.get("is_paid", entry.get("isPaid")) is True


def _amount(entry: PaymentSchedule | Mapping[str, Any]) -> int:
    if isinstance(entry, PaymentSchedule):
        return entry.amount
    if not isinstance(entry, Mapping):
        return 0
    return coerce_amount(entry.get("amount"))


def compute_total_paid(
    payment_schedules: Iterable[PaymentSchedule | Mapping[str, Any]],
) -> int:
    """Sum of amounts already received."""
    return sum((_amount(p) for p in payment_schedules if _is_paid(p)), 0)


def compute_settlement(
    quote: int,
    payment_schedules: Iterable[PaymentSchedule | Mapping[str, Any]],
) -> Settlement:
    """Compute paid and outstanding amounts against a quote.

    Outstanding is not clamped at zero so overpayment stays visible.
    """
    total_paid = compute_total_paid(payment_schedules)
    return Settlement(total_paid=total_paid, outstanding=quote - total_paid)
