from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from paycycle.amounts import ZERO, coerce_amount

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 100
BALANCE_THRESHOLD = Decimal("50")
ANYTIME_DUE_DAY = 0
REBALANCE_REASON = "Rebalance: move from overloaded to surplus period"


@dataclass(frozen=True)
class OptBill:
    id: int
    name: str
    due_day: Optional[int] = ANYTIME_DUE_DAY
    amount: Decimal = ZERO


@dataclass(frozen=True)
class OptPeriod:
    id: int
    pay_date: date
    income: Decimal = ZERO

    @property
    def pay_day(self) -> int:
        return self.pay_date.day


@dataclass(frozen=True)
class OptAssignment:
    bill_id: int
    period_id: int
    assignment_id: Optional[int] = None
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class Suggestion:
    assignment_id: Optional[int]
    bill_id: int
    bill_name: str
    from_period_id: int
    to_period_id: int
    from_period: date
    to_period: date
    amount: Decimal
    reason: str = REBALANCE_REASON


@dataclass(frozen=True)
class OptimizationResult:
    suggestions: List[Suggestion] = field(default_factory=list)
    current_min_balance: Decimal = ZERO
    optimized_min_balance: Decimal = ZERO
    improvement: Decimal = ZERO


@dataclass(frozen=True)
class Move:
    assignment_id: int
    to_period_id: int


def optimize(
    bills: Iterable[OptBill],
    periods: Iterable[OptPeriod],
    assignments: Sequence[OptAssignment],
    *,
    balance_threshold: Decimal = BALANCE_THRESHOLD,
    max_iterations: int = MAX_ITERATIONS,
) -> OptimizationResult:
    """Greedily move bills out of the tightest period to raise the minimum balance.

    Each round takes the period with the lowest balance and the one with the
    highest, and moves the largest bill that can be paid from the richer
    period. ``assignments`` is left untouched; the moves come back as
    suggestions.
    """
    bills_by_id = _index_bills(bills)
    ordered_periods = sorted(periods, key=lambda period: (period.pay_date, period.id))
    if not bills_by_id or not ordered_periods:
        return OptimizationResult()
    periods_by_id = {period.id: period for period in ordered_periods}
    threshold = coerce_amount(balance_threshold)

    current_min = min_balance(period_balances(bills_by_id, ordered_periods, assignments))
    optimized = list(assignments)
    suggestions: List[Suggestion] = []

    for iteration in range(max_iterations):
        balances = period_balances(bills_by_id, ordered_periods, optimized)
        tight = min(ordered_periods, key=lambda period: balances[period.id])
        surplus = max(ordered_periods, key=lambda period: balances[period.id])
        gap = balances[surplus.id] - balances[tight.id]
        if tight.id == surplus.id or gap < threshold:
            logger.debug("Balanced after %s iterations", iteration)
            break

        best_index = _best_candidate(bills_by_id, optimized, tight, surplus, gap)
        if best_index is None:
            logger.debug("No movable bill from period %s to %s", tight.id, surplus.id)
            break

        assignment = optimized[best_index]
        bill = bills_by_id[assignment.bill_id]
        from_period = periods_by_id[assignment.period_id]
        suggestions.append(
            Suggestion(
                assignment_id=assignment.assignment_id,
                bill_id=bill.id,
                bill_name=bill.name,
                from_period_id=from_period.id,
                to_period_id=surplus.id,
                from_period=from_period.pay_date,
                to_period=surplus.pay_date,
                amount=_assignment_amount(assignment, bill),
            )
        )
        optimized[best_index] = replace(assignment, period_id=surplus.id)

    optimized_min = min_balance(period_balances(bills_by_id, ordered_periods, optimized))
    return OptimizationResult(
        suggestions=suggestions,
        current_min_balance=current_min,
        optimized_min_balance=optimized_min,
        improvement=optimized_min - current_min,
    )


def can_pay_from(pay_day: int, due_day: Optional[int]) -> bool:
    if due_day is None or due_day == ANYTIME_DUE_DAY:
        return True
    return pay_day <= due_day


def period_balances(
    bills_by_id: Dict[int, OptBill],
    periods: Iterable[OptPeriod],
    assignments: Iterable[OptAssignment],
) -> Dict[int, Decimal]:
    balances = {period.id: coerce_amount(period.income) for period in periods}
    for assignment in assignments:
        bill = bills_by_id.get(assignment.bill_id)
        if bill is None or assignment.period_id not in balances:
            continue
        balances[assignment.period_id] -= _assignment_amount(assignment, bill)
    return balances


def min_balance(balances: Dict[int, Decimal]) -> Decimal:
    if not balances:
        return ZERO
    return min(balances.values())


def plan_moves(suggestions: Iterable[Suggestion]) -> List[Move]:
    """Collapse a suggestion sequence into one move per assignment.

    An assignment that ends up back in its original period needs no move.
    """
    origins: Dict[int, int] = {}
    targets: Dict[int, int] = {}
    for suggestion in suggestions:
        if suggestion.assignment_id is None:
            continue
        origins.setdefault(suggestion.assignment_id, suggestion.from_period_id)
        targets[suggestion.assignment_id] = suggestion.to_period_id
    return [
        Move(assignment_id=assignment_id, to_period_id=targets[assignment_id])
        for assignment_id, origin in origins.items()
        if targets[assignment_id] != origin
    ]


def _best_candidate(
    bills_by_id: Dict[int, OptBill],
    assignments: Sequence[OptAssignment],
    tight: OptPeriod,
    surplus: OptPeriod,
    gap: Decimal,
) -> Optional[int]:
    """Largest bill in ``tight`` that ``surplus`` can absorb.

    A bill bigger than the gap between the two periods would leave
    ``surplus`` below the current minimum, so it is not a candidate.
    """
    best_amount = ZERO
    best_index: Optional[int] = None
    for index, assignment in enumerate(assignments):
        if assignment.period_id != tight.id:
            continue
        bill = bills_by_id.get(assignment.bill_id)
        if bill is None or not can_pay_from(surplus.pay_day, bill.due_day):
            continue
        if _has_bill_in_period(assignments, bill.id, surplus.id):
            continue
        amount = _assignment_amount(assignment, bill)
        if amount > gap:
            continue
        if amount > best_amount:
            best_amount = amount
            best_index = index
    return best_index


def _has_bill_in_period(
    assignments: Iterable[OptAssignment], bill_id: int, period_id: int
) -> bool:
    return any(
        assignment.bill_id == bill_id and assignment.period_id == period_id
        for assignment in assignments
    )


def _index_bills(bills: Iterable[OptBill]) -> Dict[int, OptBill]:
    index: Dict[int, OptBill] = {}
    for bill in bills:
        index.setdefault(bill.id, bill)
    return index


def _assignment_amount(assignment: OptAssignment, bill: OptBill) -> Decimal:
    if assignment.amount is not None:
        return coerce_amount(assignment.amount)
    return coerce_amount(bill.amount)
