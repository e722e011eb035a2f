from __future__ import annotations

import logging
from dataclasses import dataclass, field
from calendar import month_name
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List

from paycycle.amounts import ZERO, coerce_amount
from paycycle.pay_periods import IncomeSource
from paycycle.schedules import ScheduleError, generate, normalize_schedule_kind

logger = logging.getLogger(__name__)

EXPECTED_PER_MONTH = {
    "weekly": 4,
    "biweekly": 2,
    "semimonthly": 2,
}
DEFAULT_EXPECTED_PER_MONTH = 1


@dataclass(frozen=True)
class SurplusMonth:
    month: str
    month_key: str
    source_id: int
    source: str
    extra_checks: int
    surplus_amount: Decimal


@dataclass(frozen=True)
class SurplusResult:
    surplus_months: List[SurplusMonth] = field(default_factory=list)
    annual_surplus: Decimal = ZERO


def detect_surplus(
    sources: Iterable[IncomeSource],
    range_start: date,
    range_end: date,
) -> SurplusResult:
    """Months in which a source pays more often than its usual cadence."""
    flagged: List[tuple[str, int, SurplusMonth]] = []
    for position, source in enumerate(sources):
        if not source.is_active:
            continue
        try:
            dates = generate(source.pay_schedule, source.schedule_detail, range_start, range_end)
        except ScheduleError as exc:
            logger.warning("Surplus detection skipped source %s: %s", source.id, exc)
            continue

        amount = coerce_amount(source.default_amount)
        expected = expected_per_month(source.pay_schedule)
        for month_key, count in _count_by_month(dates).items():
            if count <= expected:
                continue
            extra = count - expected
            flagged.append(
                (
                    month_key,
                    position,
                    SurplusMonth(
                        month=_month_label(month_key),
                        month_key=month_key,
                        source_id=source.id,
                        source=source.name,
                        extra_checks=extra,
                        surplus_amount=amount * extra,
                    ),
                )
            )

    flagged.sort(key=lambda item: (item[0], item[1]))
    months = [item[2] for item in flagged]
    total = sum((month.surplus_amount for month in months), ZERO)
    return SurplusResult(surplus_months=months, annual_surplus=total)


def expected_per_month(pay_schedule: str) -> int:
    try:
        kind = normalize_schedule_kind(pay_schedule)
    except ScheduleError:
        return DEFAULT_EXPECTED_PER_MONTH
    return EXPECTED_PER_MONTH.get(kind, DEFAULT_EXPECTED_PER_MONTH)


def _count_by_month(dates: Iterable[date]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for value in dates:
        key = value.strftime("%Y-%m")
        counts[key] = counts.get(key, 0) + 1
    return counts


def _month_label(month_key: str) -> str:
    year, month = month_key.split("-")
    return f"{month_name[int(month)]} {year}"
