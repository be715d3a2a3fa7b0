"""Unit tests for the next-action engine.

Tests cover:
- guard priority: overdue payment beats everything, upcoming beats checklist
- PROSPECT and ONGOING checklist progressions in order
- COMPLETED final settlement and the fully-checklisted ONGOING gap
- the upcoming-payment window boundaries and a configurable window
- malformed checklist / schedule data never raising
- the same ``now`` driving every comparison
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.autosettle.deals.next_action import (
    NEXT_ACTION_GUARDS,
    NextAction,
    NextActionResolver,
    final_settlement,
    overdue_payment,
    resolve_next_action,
)
from src.autosettle.deals.pricing import compute_quote, compute_settlement
from src.autosettle.deals.schemas import Deal, DealStatus

NOW = datetime(2025, 1, 15, tzinfo=timezone.utc)

ALL_FLAGS = {
    "quoteInitial": True,
    "quoteFinal": True,
    "contractSent": True,
    "contractReceived": True,
    "codeIssued": True,
    "reportSubmitted": True,
}


def _deal(status: DealStatus = DealStatus.PROSPECT, **checklist: bool) -> Deal:
    return Deal(id="deal-1", company_name="Acme", status=status, checklists=checklist)


def _services(amount: int) -> list[dict]:
    return [{"type": "ETC", "details": {"price": amount}}]


def _schedule(due: datetime, amount: int, *, paid: bool = False) -> dict:
    return {"dueDate": due.isoformat(), "amount": amount, "isPaid": paid}


# ── Overdue Payment ─────────────────────────────────────────────────────────


@pytest.mark.parametrize("status", list(DealStatus))
def test_overdue_payment_wins_for_every_status(status):
    deal = _deal(status)
    schedules = [_schedule(datetime(2025, 1, 10, tzinfo=timezone.utc), 50_000)]
    action = resolve_next_action(deal, _services(100_000), schedules, now=NOW)
    assert action == NextAction.OVERDUE_PAYMENT


def test_overdue_payment_ignores_paid_entries():
    deal = _deal(DealStatus.ONGOING, contractReceived=True, codeIssued=True)
    schedules = [_schedule(datetime(2025, 1, 10, tzinfo=timezone.utc), 50_000, paid=True)]
    action = resolve_next_action(deal, _services(50_000), schedules, now=NOW)
    assert action == NextAction.SUBMIT_REPORT


def test_overdue_beats_missing_contract():
    deal = _deal(DealStatus.ONGOING)
    schedules = [_schedule(NOW - timedelta(seconds=1), 10_000)]
    action = resolve_next_action(deal, _services(10_000), schedules, now=NOW)
    assert action == NextAction.OVERDUE_PAYMENT


def test_payment_due_exactly_now_is_not_overdue():
    deal = _deal(DealStatus.ONGOING)
    schedules = [_schedule(NOW, 10_000)]
    action = resolve_next_action(deal, _services(10_000), schedules, now=NOW)
    assert action == NextAction.UPCOMING_PAYMENT


# ── Upcoming Payment ────────────────────────────────────────────────────────


def test_upcoming_payment_within_window():
    deal = _deal(DealStatus.ONGOING)
    schedules = [_schedule(datetime(2025, 1, 20, tzinfo=timezone.utc), 50_000)]
    action = resolve_next_action(deal, _services(100_000), schedules, now=NOW)
    assert action == NextAction.UPCOMING_PAYMENT


def test_upcoming_window_is_inclusive_of_seven_days():
    deal = _deal(DealStatus.ONGOING)
    on_edge = [_schedule(NOW + timedelta(days=7), 50_000)]
    past_edge = [_schedule(NOW + timedelta(days=7, seconds=1), 50_000)]
    assert (
        resolve_next_action(deal, _services(100_000), on_edge, now=NOW)
        == NextAction.UPCOMING_PAYMENT
    )
    assert (
        resolve_next_action(deal, _services(100_000), past_edge, now=NOW)
        == NextAction.COLLECT_CONTRACT
    )


def test_upcoming_payment_requires_outstanding_balance():
    deal = _deal(DealStatus.ONGOING)
    schedules = [
        _schedule(datetime(2025, 1, 1, tzinfo=timezone.utc), 100_000, paid=True),
        _schedule(datetime(2025, 1, 20, tzinfo=timezone.utc), 10_000),
    ]
    action = resolve_next_action(deal, _services(100_000), schedules, now=NOW)
    assert action == NextAction.COLLECT_CONTRACT


def test_upcoming_payment_only_for_ongoing_deals():
    deal = _deal(DealStatus.COMPLETED)
    schedules = [_schedule(datetime(2025, 1, 20, tzinfo=timezone.utc), 50_000)]
    action = resolve_next_action(deal, _services(100_000), schedules, now=NOW)
    assert action == NextAction.FINAL_SETTLEMENT


def test_configurable_upcoming_window():
    resolver = NextActionResolver(upcoming_window=timedelta(days=14))
    deal = _deal(DealStatus.ONGOING)
    schedules = [_schedule(NOW + timedelta(days=10), 50_000)]
    assert resolver.resolve(deal, _services(100_000), schedules, NOW) == NextAction.UPCOMING_PAYMENT
    assert (
        resolve_next_action(deal, _services(100_000), schedules, now=NOW)
        == NextAction.COLLECT_CONTRACT
    )


# ── Prospect Progression ────────────────────────────────────────────────────


def test_prospect_without_initial_quote():
    assert resolve_next_action(_deal(), now=NOW) == NextAction.SEND_INITIAL_QUOTE


def test_prospect_without_final_quote():
    deal = _deal(quoteInitial=True)
    assert resolve_next_action(deal, now=NOW) == NextAction.SEND_FINAL_QUOTE


def test_prospect_with_both_quotes_sent():
    deal = _deal(quoteInitial=True, quoteFinal=True)
    assert resolve_next_action(deal, now=NOW) == NextAction.CONFIRM_PROGRESSION


def test_prospect_final_quote_without_initial_still_asks_for_initial():
    deal = _deal(quoteFinal=True)
    assert resolve_next_action(deal, now=NOW) == NextAction.SEND_INITIAL_QUOTE


# ── Ongoing Progression ─────────────────────────────────────────────────────


def test_ongoing_progression_order():
    assert resolve_next_action(_deal(DealStatus.ONGOING), now=NOW) == NextAction.COLLECT_CONTRACT
    assert (
        resolve_next_action(_deal(DealStatus.ONGOING, contractReceived=True), now=NOW)
        == NextAction.ISSUE_CODE
    )
    assert (
        resolve_next_action(
            _deal(DealStatus.ONGOING, contractReceived=True, codeIssued=True), now=NOW
        )
        == NextAction.SUBMIT_REPORT
    )


def test_contract_sent_does_not_count_as_received():
    deal = _deal(DealStatus.ONGOING, contractSent=True)
    assert resolve_next_action(deal, now=NOW) == NextAction.COLLECT_CONTRACT


def test_fully_checklisted_ongoing_deal_with_balance_has_no_action():
    deal = _deal(DealStatus.ONGOING, **ALL_FLAGS)
    schedules = [_schedule(datetime(2025, 3, 1, tzinfo=timezone.utc), 50_000)]
    assert resolve_next_action(deal, _services(100_000), schedules, now=NOW) is None


# ── Terminal Statuses ───────────────────────────────────────────────────────


def test_completed_with_outstanding_balance():
    deal = _deal(DealStatus.COMPLETED, **ALL_FLAGS)
    schedules = [_schedule(datetime(2025, 1, 1, tzinfo=timezone.utc), 60_000, paid=True)]
    action = resolve_next_action(deal, _services(100_000), schedules, now=NOW)
    assert action == NextAction.FINAL_SETTLEMENT


def test_completed_and_fully_paid_has_no_action():
    deal = _deal(DealStatus.COMPLETED)
    schedules = [_schedule(datetime(2025, 1, 1, tzinfo=timezone.utc), 100_000, paid=True)]
    assert resolve_next_action(deal, _services(100_000), schedules, now=NOW) is None


def test_completed_overpaid_has_no_action():
    deal = _deal(DealStatus.COMPLETED)
    schedules = [_schedule(datetime(2025, 1, 1, tzinfo=timezone.utc), 120_000, paid=True)]
    assert resolve_next_action(deal, _services(100_000), schedules, now=NOW) is None


@pytest.mark.parametrize("status", [DealStatus.HOLD, DealStatus.CARRIED_OVER])
def test_hold_and_carried_over_only_flag_overdue(status):
    deal = _deal(status)
    upcoming = [_schedule(datetime(2025, 1, 20, tzinfo=timezone.utc), 50_000)]
    assert resolve_next_action(deal, _services(100_000), upcoming, now=NOW) is None


# ── Robustness ──────────────────────────────────────────────────────────────


def test_missing_checklists_reads_as_all_flags_unset():
    deal = {"status": "PROSPECT", "checklists": None}
    assert resolve_next_action(deal, now=NOW) == NextAction.SEND_INITIAL_QUOTE


def test_non_boolean_flags_are_not_set():
    deal = {"status": "PROSPECT", "checklists": {"quoteInitial": "yes"}}
    assert resolve_next_action(deal, now=NOW) == NextAction.SEND_INITIAL_QUOTE


def test_unparseable_schedule_entries_are_skipped():
    deal = _deal(DealStatus.ONGOING)
    schedules = [
        {"dueDate": "not a date", "amount": 10_000, "isPaid": False},
        "garbage",
    ]
    action = resolve_next_action(deal, _services(10_000), schedules, now=NOW)
    assert action == NextAction.COLLECT_CONTRACT


def test_unknown_status_has_no_action():
    deal = {"status": "ARCHIVED", "checklists": {}}
    assert resolve_next_action(deal, now=NOW) is None


def test_naive_now_is_taken_as_utc():
    deal = _deal(DealStatus.ONGOING)
    schedules = [_schedule(datetime(2025, 1, 14, tzinfo=timezone.utc), 10_000)]
    action = resolve_next_action(
        deal, _services(10_000), schedules, now=datetime(2025, 1, 15)
    )
    assert action == NextAction.OVERDUE_PAYMENT


def test_injected_now_decides_overdue_versus_upcoming():
    deal = _deal(DealStatus.ONGOING)
    schedules = [_schedule(datetime(2025, 1, 20, tzinfo=timezone.utc), 50_000)]
    services = _services(100_000)
    assert resolve_next_action(deal, services, schedules, now=NOW) == NextAction.UPCOMING_PAYMENT
    later = datetime(2025, 1, 21, tzinfo=timezone.utc)
    assert resolve_next_action(deal, services, schedules, now=later) == NextAction.OVERDUE_PAYMENT


# ── Resolver ────────────────────────────────────────────────────────────────


def test_guard_order():
    assert NEXT_ACTION_GUARDS[0] is overdue_payment
    assert NEXT_ACTION_GUARDS[-1] is final_settlement
    assert len(NEXT_ACTION_GUARDS) == 5


def test_snapshot_carries_quote_and_settlement():
    resolver = NextActionResolver()
    schedules = [_schedule(datetime(2025, 1, 1, tzinfo=timezone.utc), 30_000, paid=True)]
    snapshot = resolver.snapshot(_deal(), _services(100_000), schedules, NOW)
    assert snapshot.quote == 100_000
    assert snapshot.settlement.total_paid == 30_000
    assert snapshot.outstanding == 70_000
    assert snapshot.now == NOW


def test_custom_guards_are_evaluated_in_order():
    resolver = NextActionResolver(
        guards=(lambda s: None, lambda s: NextAction.ISSUE_CODE, lambda s: NextAction.SUBMIT_REPORT)
    )
    assert resolver.resolve(_deal(), now=NOW) == NextAction.ISSUE_CODE


def test_fully_checklisted_and_settled_ongoing_deal_has_no_action():
    deal = _deal(DealStatus.ONGOING, **ALL_FLAGS)
    schedules = [_schedule(datetime(2025, 1, 1, tzinfo=timezone.utc), 100_000, paid=True)]
    assert resolve_next_action(deal, _services(100_000), schedules, now=NOW) is None


# ── Settlement Consistency ──────────────────────────────────────────────────


def test_snapshot_settlement_matches_aggregator_for_undated_entries():
    services = _services(1_000)
    schedules = [{"amount": 400, "isPaid": True}, {"amount": 600, "isPaid": False}]
    snapshot = NextActionResolver().snapshot(_deal(), services, schedules, NOW)
    assert snapshot.settlement == compute_settlement(compute_quote(services), schedules)
    assert snapshot.outstanding == 600
    assert snapshot.payment_schedules == ()


def test_completed_deal_paid_by_undated_entry_has_no_action():
    deal = {"status": "COMPLETED", "checklists": ALL_FLAGS}
    schedules = [{"amount": 400, "isPaid": True}]
    assert resolve_next_action(deal, _services(400), schedules, now=NOW) is None


def test_settlement_counts_entries_with_unparseable_dates():
    schedules = [{"dueDate": "not a date", "amount": 250, "isPaid": True}]
    snapshot = NextActionResolver().snapshot(_deal(), _services(1_000), schedules, NOW)
    assert snapshot.settlement.total_paid == 250
    assert snapshot.outstanding == 750


def test_schedules_given_as_a_generator_are_read_once():
    schedules = (
        s
        for s in [_schedule(datetime(2025, 1, 10, tzinfo=timezone.utc), 300, paid=True)]
    )
    snapshot = NextActionResolver().snapshot(_deal(), _services(1_000), schedules, NOW)
    assert snapshot.settlement.total_paid == 300
    assert len(snapshot.payment_schedules) == 1


# ── Malformed Amounts ───────────────────────────────────────────────────────


@pytest.mark.parametrize("amount", [100.5, None, "abc"])
def test_overdue_entry_with_malformed_amount_is_still_overdue(amount):
    deal = {"status": "HOLD"}
    schedules = [{"dueDate": "2025-01-01T00:00:00+00:00", "amount": amount, "isPaid": False}]
    assert resolve_next_action(deal, [], schedules, now=NOW) == NextAction.OVERDUE_PAYMENT


def test_upcoming_entry_with_fractional_amount_is_upcoming():
    deal = _deal(DealStatus.ONGOING)
    schedules = [{"dueDate": "2025-01-18T00:00:00+00:00", "amount": 99.5, "isPaid": False}]
    assert resolve_next_action(deal, _services(1_000), schedules, now=NOW) == NextAction.UPCOMING_PAYMENT
