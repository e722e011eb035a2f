from __future__ import annotations

import logging
from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from paycycle.amounts import coerce_optional_amount
from paycycle.schedules import (
    BIWEEKLY_DAYS,
    ScheduleError,
    clamp_day,
    iter_day_lattice,
    iter_month_lattice,
    iter_months,
    parse_date,
    parse_detail,
)

logger = logging.getLogger(__name__)

SUPPORTED_RECURRENCES = {"monthly", "biweekly", "quarterly", "annual"}
CYCLE_MONTHS = {"quarterly": 3, "annual": 12}


@dataclass(frozen=True)
class BillRule:
    id: int
    name: str
    due_day: Optional[int]
    default_amount: Optional[Decimal] = None
    recurrence: str = "monthly"
    recurrence_detail: Any = None
    is_active: bool = True


@dataclass(frozen=True)
class CandidatePeriod:
    id: int
    pay_date: date


@dataclass(frozen=True)
class ExistingAssignment:
    bill_id: int
    period_id: int
    pay_date: date
    manually_moved: bool = False
    assignment_id: Optional[int] = None


@dataclass(frozen=True)
class NewAssignment:
    bill_id: int
    period_id: int
    pay_date: date
    due_date: date
    planned_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class AutoAssignResult:
    created: List[NewAssignment] = field(default_factory=list)
    replaced: List[ExistingAssignment] = field(default_factory=list)
    errors: Dict[int, str] = field(default_factory=dict)


class RecurrenceDetail(BaseModel):
    anchor_date: str | date | None = Field(default=None, union_mode="left_to_right")


def auto_assign(
    bills: Iterable[BillRule],
    periods: Iterable[CandidatePeriod],
    existing: Iterable[ExistingAssignment],
    range_start: date,
    range_end: date,
    force: bool = False,
) -> AutoAssignResult:
    """Place every bill occurrence in range into its best pay period.

    Only the assignments that are missing are returned; pairs and calendar
    months already covered by ``existing`` are left alone. Months covered
    solely by manually moved assignments are never refilled unless ``force``
    is set, in which case those assignments are listed in ``replaced`` and
    the bill is put back in its default period. Biweekly, quarterly and
    annual bills skip any period whose month holds a manual move of the
    bill, under the same ``force`` rule.
    """
    result = AutoAssignResult()
    if range_start > range_end:
        return result
    ordered_periods = sorted(periods, key=lambda period: (period.pay_date, period.id))
    if not ordered_periods:
        return result

    coverage = _Coverage(existing)
    for bill in bills:
        if not bill.is_active or bill.due_day is None:
            continue
        if not 1 <= bill.due_day <= 31:
            logger.warning("Bill %s (%s) has invalid due day %s", bill.id, bill.name, bill.due_day)
            result.errors[bill.id] = f"due day must be 1-31, got {bill.due_day}"
            continue
        recurrence = _normalize_recurrence(bill.recurrence)
        if recurrence != "monthly":
            anchor = _anchor_for_bill(bill, result.errors)
            if anchor is not None:
                occurrences = _cyclic_occurrences(recurrence, anchor, range_start, range_end)
                created, replaced = _assign_cyclic(
                    bill, occurrences, ordered_periods, coverage, force
                )
                result.created.extend(created)
                result.replaced.extend(replaced)
                continue
        created, replaced = _assign_monthly(
            bill, ordered_periods, coverage, range_start, range_end, force
        )
        result.created.extend(created)
        result.replaced.extend(replaced)
    return result


def find_best_period(
    ordered_periods: Sequence[CandidatePeriod], due_date: date
) -> Optional[CandidatePeriod]:
    """Latest period paid on or before ``due_date``.

    When every period comes after the due date, the earliest period in the
    due date's month or later is used instead.
    """
    pay_dates = [period.pay_date for period in ordered_periods]
    index = bisect_right(pay_dates, due_date) - 1
    if index >= 0:
        return ordered_periods[index]
    due_month = (due_date.year, due_date.month)
    for period in ordered_periods:
        if (period.pay_date.year, period.pay_date.month) >= due_month:
            return period
    return None


class _Coverage:
    def __init__(self, existing: Iterable[ExistingAssignment]) -> None:
        self.pairs: Set[Tuple[int, int]] = set()
        self.months: Dict[Tuple[int, int, int], List[ExistingAssignment]] = {}
        self.new_months: Set[Tuple[int, int, int]] = set()
        self.released: Set[ExistingAssignment] = set()
        for assignment in existing:
            self.pairs.add((assignment.bill_id, assignment.period_id))
            key = (assignment.bill_id, assignment.pay_date.year, assignment.pay_date.month)
            self.months.setdefault(key, []).append(assignment)

    def has_pair(self, bill_id: int, period_id: int) -> bool:
        return (bill_id, period_id) in self.pairs

    def month_assignments(self, bill_id: int, year: int, month: int) -> List[ExistingAssignment]:
        return [
            item
            for item in self.months.get((bill_id, year, month), [])
            if item not in self.released
        ]

    def manual_in_month(self, bill_id: int, year: int, month: int) -> List[ExistingAssignment]:
        return [
            item for item in self.month_assignments(bill_id, year, month) if item.manually_moved
        ]

    def month_filled(self, bill_id: int, year: int, month: int) -> bool:
        return (bill_id, year, month) in self.new_months

    def add(self, assignment: NewAssignment) -> None:
        self.pairs.add((assignment.bill_id, assignment.period_id))
        self.new_months.add(
            (assignment.bill_id, assignment.pay_date.year, assignment.pay_date.month)
        )

    def release(self, assignment: ExistingAssignment) -> None:
        self.pairs.discard((assignment.bill_id, assignment.period_id))
        self.released.add(assignment)


def _assign_monthly(
    bill: BillRule,
    ordered_periods: Sequence[CandidatePeriod],
    coverage: _Coverage,
    range_start: date,
    range_end: date,
    force: bool,
) -> Tuple[List[NewAssignment], List[ExistingAssignment]]:
    created: List[NewAssignment] = []
    replaced: List[ExistingAssignment] = []
    for year, month in iter_months(range_start, range_end):
        if coverage.month_filled(bill.id, year, month):
            continue
        in_month = coverage.month_assignments(bill.id, year, month)
        if in_month and not (force and all(item.manually_moved for item in in_month)):
            continue

        due_date = clamp_day(year, month, bill.due_day)
        if due_date < range_start or due_date > range_end:
            continue
        best = find_best_period(ordered_periods, due_date)
        if best is None:
            continue
        if any(item.period_id == best.id for item in in_month):
            # the user already placed it in its default period
            continue
        if coverage.has_pair(bill.id, best.id):
            continue
        for item in in_month:
            coverage.release(item)
            replaced.append(item)

        assignment = NewAssignment(
            bill_id=bill.id,
            period_id=best.id,
            pay_date=best.pay_date,
            due_date=due_date,
            planned_amount=coerce_optional_amount(bill.default_amount),
        )
        coverage.add(assignment)
        created.append(assignment)
    return created, replaced


def _assign_cyclic(
    bill: BillRule,
    occurrences: Iterable[date],
    ordered_periods: Sequence[CandidatePeriod],
    coverage: _Coverage,
    force: bool,
) -> Tuple[List[NewAssignment], List[ExistingAssignment]]:
    amount = coerce_optional_amount(bill.default_amount)
    replaced: List[ExistingAssignment] = []
    totals: Dict[int, Optional[Decimal]] = {}
    first_due: Dict[int, date] = {}
    targets: Dict[int, CandidatePeriod] = {}
    for due_date in occurrences:
        best = find_best_period(ordered_periods, due_date)
        if best is None:
            continue
        if best.id not in totals:
            if coverage.has_pair(bill.id, best.id):
                continue
            moved = coverage.manual_in_month(bill.id, best.pay_date.year, best.pay_date.month)
            if moved and not force:
                continue
            for item in moved:
                coverage.release(item)
                replaced.append(item)
            totals[best.id] = amount
            first_due[best.id] = due_date
            targets[best.id] = best
        elif amount is not None:
            totals[best.id] += amount

    created: List[NewAssignment] = []
    for period_id, total in totals.items():
        period = targets[period_id]
        assignment = NewAssignment(
            bill_id=bill.id,
            period_id=period_id,
            pay_date=period.pay_date,
            due_date=first_due[period_id],
            planned_amount=total,
        )
        coverage.add(assignment)
        created.append(assignment)
    return created, replaced


def _cyclic_occurrences(
    recurrence: str, anchor: date, range_start: date, range_end: date
) -> Iterator[date]:
    if recurrence == "biweekly":
        return iter_day_lattice(anchor, BIWEEKLY_DAYS, range_start, range_end)
    return iter_month_lattice(anchor, CYCLE_MONTHS[recurrence], range_start, range_end)


def _anchor_for_bill(bill: BillRule, errors: Dict[int, str]) -> Optional[date]:
    if bill.recurrence_detail in (None, "", b"", {}):
        return None
    try:
        detail = parse_detail(RecurrenceDetail, bill.recurrence_detail, "recurrence")
        if detail.anchor_date in (None, ""):
            return None
        return parse_date(detail.anchor_date, "anchor date")
    except ScheduleError as exc:
        logger.warning(
            "Bill %s (%s) falls back to monthly assignment: %s", bill.id, bill.name, exc
        )
        errors[bill.id] = str(exc)
        return None


def _normalize_recurrence(recurrence: Optional[str]) -> str:
    normalized = (recurrence or "monthly").strip().lower()
    if normalized not in SUPPORTED_RECURRENCES:
        return "monthly"
    return normalized
