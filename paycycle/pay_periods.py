from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from paycycle.amounts import coerce_optional_amount
from paycycle.schedules import ScheduleError, generate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IncomeSource:
    id: int
    name: str
    pay_schedule: str
    schedule_detail: Any
    default_amount: Optional[Decimal] = None
    is_active: bool = True


@dataclass(frozen=True)
class PeriodDraft:
    income_source_id: int
    pay_date: date
    expected_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class PeriodPlan:
    new_periods: List[PeriodDraft] = field(default_factory=list)
    errors: Dict[int, str] = field(default_factory=dict)


def plan_pay_periods(
    sources: Iterable[IncomeSource],
    range_start: date,
    range_end: date,
    existing_periods: Iterable[Tuple[int, date]] = (),
) -> PeriodPlan:
    """Pay periods that still need to exist for the active sources in range.

    ``existing_periods`` holds ``(income_source_id, pay_date)`` pairs that are
    already stored; those dates are never planned again. A source whose
    schedule fails to parse is reported in ``errors`` and the rest continue.
    """
    existing_index = _index_existing_periods(existing_periods)
    plan = PeriodPlan()
    for source in sources:
        if not source.is_active:
            continue
        try:
            dates = generate(source.pay_schedule, source.schedule_detail, range_start, range_end)
        except ScheduleError as exc:
            logger.warning("Skipping income source %s (%s): %s", source.id, source.name, exc)
            plan.errors[source.id] = str(exc)
            continue
        already_planned = existing_index.setdefault(source.id, set())
        for pay_date in dates:
            if pay_date in already_planned:
                continue
            already_planned.add(pay_date)
            plan.new_periods.append(
                PeriodDraft(
                    income_source_id=source.id,
                    pay_date=pay_date,
                    expected_amount=coerce_optional_amount(source.default_amount),
                )
            )
    return plan


def _index_existing_periods(
    existing_periods: Iterable[Tuple[int, date]],
) -> Dict[int, Set[date]]:
    index: Dict[int, Set[date]] = {}
    for source_id, pay_date in existing_periods:
        index.setdefault(source_id, set()).add(pay_date)
    return index
