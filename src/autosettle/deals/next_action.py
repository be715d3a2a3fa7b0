"""Next-action recommendation engine.

Inspects a deal's status, checklist flags, payment schedule and financials
and recommends the single most urgent follow-up. Guards are evaluated in a
fixed priority order and the first one that matches wins:

1. Overdue payment (any status)
2. Upcoming payment within the window (ONGOING with an outstanding balance)
3. Prospect quote progression (PROSPECT)
4. Ongoing checklist progression (ONGOING)
5. Final settlement (COMPLETED with an outstanding balance)

Guards overlap on purpose -- an ONGOING deal with an overdue payment and no
contract matches both 1 and 4 -- so the order is the business priority and
must not be rearranged.

The engine is stateless. ``now`` is captured once per evaluation (or
injected by the caller) and every time comparison in that evaluation uses
the same instant. Missing or malformed checklist and payment data never
raise; they read as "flag not set" and "no payment".
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from src.autosettle.deals.pricing import Settlement, compute_quote, compute_settlement
from src.autosettle.deals.schemas import (
    Checklist,
    DealStatus,
    PaymentSchedule,
    Service,
)

logger = structlog.get_logger(__name__)

UPCOMING_PAYMENT_WINDOW = timedelta(days=7)


class NextAction(str, Enum):
    """Recommended follow-up for a deal; the value is the display hint."""

    OVERDUE_PAYMENT = "overdue payment needs confirmation"
    UPCOMING_PAYMENT = "upcoming payment needs confirmation"
    SEND_INITIAL_QUOTE = "initial quote must be sent"
    SEND_FINAL_QUOTE = "final quote must be sent"
    CONFIRM_PROGRESSION = "confirm deal progression"
    COLLECT_CONTRACT = "contract must be collected"
    ISSUE_CODE = "code must be issued"
    SUBMIT_REPORT = "report must be submitted"
    FINAL_SETTLEMENT = "final settlement needs confirmation"


# ── Evaluation Snapshot ─────────────────────────────────────────────────────


class DealSnapshot(BaseModel):
    """Everything a guard may look at, frozen for one evaluation."""

    model_config = ConfigDict(frozen=True)

    status: str
    checklist: Checklist
    payment_schedules: tuple[PaymentSchedule, ...]
    quote: int
    settlement: Settlement
    now: datetime
    upcoming_window: timedelta = UPCOMING_PAYMENT_WINDOW

    @property
    def outstanding(self) -> int:
        return self.settlement.outstanding

    def unpaid(self) -> Iterable[PaymentSchedule]:
        return (p for p in self.payment_schedules if not p.is_paid)


Guard = Callable[[DealSnapshot], NextAction | None]


# ── Guards (priority order) ─────────────────────────────────────────────────


def overdue_payment(snapshot: DealSnapshot) -> NextAction | None:
    if any(p.due_date < snapshot.now for p in snapshot.unpaid()):
        return NextAction.OVERDUE_PAYMENT
    return None


def upcoming_payment(snapshot: DealSnapshot) -> NextAction | None:
    if snapshot.status != DealStatus.ONGOING.value or snapshot.outstanding <= 0:
        return None
    horizon = snapshot.now + snapshot.upcoming_window
    if any(snapshot.now <= p.due_date <= horizon for p in snapshot.unpaid()):
        return NextAction.UPCOMING_PAYMENT
    return None


def prospect_progression(snapshot: DealSnapshot) -> NextAction | None:
    if snapshot.status != DealStatus.PROSPECT.value:
        return None
    if not snapshot.checklist.quote_initial:
        return NextAction.SEND_INITIAL_QUOTE
    if not snapshot.checklist.quote_final:
        return NextAction.SEND_FINAL_QUOTE
    return NextAction.CONFIRM_PROGRESSION


def ongoing_progression(snapshot: DealSnapshot) -> NextAction | None:
    if snapshot.status != DealStatus.ONGOING.value:
        return None
    if not snapshot.checklist.contract_received:
        return NextAction.COLLECT_CONTRACT
    if not snapshot.checklist.code_issued:
        return NextAction.ISSUE_CODE
    if not snapshot.checklist.report_submitted:
        return NextAction.SUBMIT_REPORT
    # Fully checklisted: nothing to do here, even with a balance left
    return None


def final_settlement(snapshot: DealSnapshot) -> NextAction | None:
    if snapshot.status == DealStatus.COMPLETED.value and snapshot.outstanding > 0:
        return NextAction.FINAL_SETTLEMENT
    return None


NEXT_ACTION_GUARDS: tuple[Guard, ...] = (
    overdue_payment,
    upcoming_payment,
    prospect_progression,
    ongoing_progression,
    final_settlement,
)


# ── Input Normalization ─────────────────────────────────────────────────────


def _status_of(deal: Any) -> str:
    status = deal.get("status") if isinstance(deal, Mapping) else getattr(deal, "status", None)
    if isinstance(status, Enum):
        return str(status.value)
    return status if isinstance(status, str) else ""


def _checklist_of(deal: Any) -> Checklist:
    raw = deal.get("checklists") if isinstance(deal, Mapping) else getattr(deal, "checklists", None)
    if isinstance(raw, Checklist):
        return raw
    return Checklist.model_validate(dict(raw) if isinstance(raw, Mapping) else {})


def _schedules(
    payment_schedules: Iterable[PaymentSchedule | Mapping[str, Any]] | None,
) -> tuple[PaymentSchedule, ...]:
    entries: list[PaymentSchedule] = []
    for entry in payment_schedules or ():
        if isinstance(entry, PaymentSchedule):
            entries.append(entry)
            continue
        try:
            entries.append(PaymentSchedule.model_validate(entry))
        except ValidationError:
            logger.warning("next_action.payment_schedule_skipped", reason="unparseable")
    return tuple(entries)


def _utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


# ── Resolver ────────────────────────────────────────────────────────────────


class NextActionResolver:
    """Ordered, first-match-wins evaluator over NEXT_ACTION_GUARDS."""

    def __init__(
        self,
        upcoming_window: timedelta = UPCOMING_PAYMENT_WINDOW,
        guards: tuple[Guard, ...] = NEXT_ACTION_GUARDS,
    ) -> None:
        self._upcoming_window = upcoming_window
        self._guards = guards

    def snapshot(
        self,
        deal: Any,
        services: Iterable[Service | Mapping[str, Any]] | None,
        payment_schedules: Iterable[PaymentSchedule | Mapping[str, Any]] | None,
        now: datetime | None = None,
    ) -> DealSnapshot:
        """Freeze the inputs of one evaluation, capturing ``now`` once.

        Quote and settlement come from the raw entries, exactly as the
        pricing module sees them. Only the date guards are restricted to
        entries with a usable due date.
        """
        raw_schedules = list(payment_schedules or ())
        quote = compute_quote(services or ())
        return DealSnapshot(
            status=_status_of(deal),
            checklist=_checklist_of(deal),
            payment_schedules=_schedules(raw_schedules),
            quote=quote,
            settlement=compute_settlement(quote, raw_schedules),
            now=_utc(now) if now is not None else datetime.now(timezone.utc),
            upcoming_window=self._upcoming_window,
        )

    def evaluate(self, snapshot: DealSnapshot) -> NextAction | None:
        """Return the first matching guard's action, or None."""
        for guard in self._guards:
            action = guard(snapshot)
            if action is not None:
                logger.debug(
                    "next_action.resolved",
                    guard=guard.__name__,
                    action=action.name,
                    status=snapshot.status,
                    outstanding=snapshot.outstanding,
                )
                return action
        return None

    def resolve(
        self,
        deal: Any,
        services: Iterable[Service | Mapping[str, Any]] | None = None,
        payment_schedules: Iterable[PaymentSchedule | Mapping[str, Any]] | None = None,
        now: datetime | None = None,
    ) -> NextAction | None:
        return self.evaluate(self.snapshot(deal, services, payment_schedules, now))


default_resolver = NextActionResolver()


def resolve_next_action(
    deal: Any,
    services: Iterable[Service | Mapping[str, Any]] | None = None,
    payment_schedules: Iterable[PaymentSchedule | Mapping[str, Any]] | None = None,
    *,
    now: datetime | None = None,
) -> NextAction | None:
    """Recommend the single highest-priority follow-up for a deal.

    Args:
        deal: Deal aggregate, or any object/mapping exposing ``status`` and
            ``checklists``.
        services: The deal's services (used for the quote).
        payment_schedules: The deal's payment schedule entries.
        now: Evaluation instant; defaults to the current UTC time.

    Returns:
        The recommended NextAction, or None when nothing is pending.
    """
    return default_resolver.resolve(deal, services, payment_schedules, now)
