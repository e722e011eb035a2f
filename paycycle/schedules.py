from __future__ import annotations

from calendar import monthrange
from datetime import date, datetime, timedelta
from typing import Any, Iterator, List, Mapping, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

WEEKLY_DAYS = 7
BIWEEKLY_DAYS = 14
SUPPORTED_SCHEDULES = ("weekly", "biweekly", "semimonthly", "one_time")
WEEKDAY_NAMES = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)
DATE_FORMAT = "%Y-%m-%d"


class ScheduleError(ValueError):
    """Base class for schedule detail problems."""


class UnknownScheduleKind(ScheduleError):
    pass


class MalformedScheduleDetail(ScheduleError):
    pass


class InvalidAnchorDate(ScheduleError):
    pass


class InvalidDayCount(ScheduleError):
    pass


class WeeklyDetail(BaseModel):
    weekday: int = 0


class BiweeklyDetail(BaseModel):
    weekday: int = 0
    anchor_date: str | date = Field(default="", union_mode="left_to_right")


class SemimonthlyDetail(BaseModel):
    days: list[int]
    adjust_for_weekends: bool = False


class OneTimeDetail(BaseModel):
    occurs_on: str | date = Field(default="", alias="date", union_mode="left_to_right")


DetailT = TypeVar("DetailT", bound=BaseModel)


def generate(
    schedule_kind: str,
    detail: Any,
    range_start: date,
    range_end: date,
) -> List[date]:
    """Occurrence dates of a pay schedule within ``[range_start, range_end]``.

    ``detail`` may be a mapping or a JSON document. Raises a
    :class:`ScheduleError` subclass when the kind is unknown or the detail
    does not fit it. An inverted range yields an empty list.
    """
    kind = normalize_schedule_kind(schedule_kind)
    if kind == "weekly":
        weekly = parse_detail(WeeklyDetail, detail, kind)
        _validate_weekday(weekly.weekday, kind)
        return _generate_weekly(weekly, range_start, range_end)
    if kind == "biweekly":
        biweekly = parse_detail(BiweeklyDetail, detail, kind)
        _validate_weekday(biweekly.weekday, kind)
        anchor = parse_date(biweekly.anchor_date, "anchor date")
        return list(iter_day_lattice(anchor, BIWEEKLY_DAYS, range_start, range_end))
    if kind == "semimonthly":
        semimonthly = parse_detail(SemimonthlyDetail, detail, kind)
        _validate_days(semimonthly.days)
        return _generate_semimonthly(semimonthly, range_start, range_end)
    one_time = parse_detail(OneTimeDetail, detail, kind)
    occurrence = parse_date(one_time.occurs_on, "one-time date")
    if range_start <= occurrence <= range_end:
        return [occurrence]
    return []


def generate_for_year(schedule_kind: str, detail: Any, year: int) -> List[date]:
    return generate(schedule_kind, detail, date(year, 1, 1), date(year, 12, 31))


def normalize_schedule_kind(schedule_kind: str) -> str:
    if not isinstance(schedule_kind, str):
        raise UnknownScheduleKind(f"unknown pay schedule: {schedule_kind!r}")
    normalized = schedule_kind.strip().lower().replace("-", "_")
    if normalized not in SUPPORTED_SCHEDULES:
        raise UnknownScheduleKind(f"unknown pay schedule: {schedule_kind}")
    return normalized


def parse_detail(model: Type[DetailT], detail: Any, kind: str) -> DetailT:
    try:
        if isinstance(detail, (str, bytes, bytearray)):
            return model.model_validate_json(detail)
        if isinstance(detail, BaseModel):
            detail = detail.model_dump(by_alias=True)
        if not isinstance(detail, Mapping):
            raise MalformedScheduleDetail(
                f"parsing {kind} schedule: expected an object, got {type(detail).__name__}"
            )
        return model.model_validate(dict(detail))
    except ValidationError as exc:
        raise MalformedScheduleDetail(f"parsing {kind} schedule: {exc}") from exc


def parse_date(value: date | str | None, label: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        parsed = datetime.strptime(value or "", DATE_FORMAT).date()
    except (TypeError, ValueError) as exc:
        raise InvalidAnchorDate(f"parsing {label}: {value!r} is not YYYY-MM-DD") from exc
    # strptime accepts unpadded fields such as 2025-1-5
    if parsed.isoformat() != value:
        raise InvalidAnchorDate(f"parsing {label}: {value!r} is not YYYY-MM-DD")
    return parsed


def first_on_or_after(anchor: date, minimum: date, step_days: int) -> date:
    """First ``anchor + k * step_days`` (any integer k) on or after ``minimum``."""
    cycles = (minimum - anchor).days // step_days
    current = anchor + timedelta(days=cycles * step_days)
    if current < minimum:
        current += timedelta(days=step_days)
    return current


def iter_day_lattice(
    anchor: date, step_days: int, range_start: date, range_end: date
) -> Iterator[date]:
    if range_start > range_end:
        return
    current = first_on_or_after(anchor, range_start, step_days)
    step = timedelta(days=step_days)
    while current <= range_end:
        yield current
        current += step


def add_months(anchor: date, months: int) -> date:
    total_month = anchor.month - 1 + months
    year = anchor.year + total_month // 12
    month = total_month % 12 + 1
    return date(year, month, min(anchor.day, last_day_of_month(year, month)))


def first_monthly_on_or_after(
    anchor: date, minimum: date, step_months: int = 1
) -> tuple[date, int]:
    months_between = (minimum.year - anchor.year) * 12 + (minimum.month - anchor.month)
    cycles = months_between // step_months
    candidate = add_months(anchor, cycles * step_months)
    while candidate < minimum:
        cycles += 1
        candidate = add_months(anchor, cycles * step_months)
    return candidate, cycles


def iter_month_lattice(
    anchor: date, step_months: int, range_start: date, range_end: date
) -> Iterator[date]:
    if range_start > range_end:
        return
    current, cycles = first_monthly_on_or_after(anchor, range_start, step_months)
    while current <= range_end:
        yield current
        cycles += 1
        current = add_months(anchor, cycles * step_months)


def iter_months(range_start: date, range_end: date) -> Iterator[tuple[int, int]]:
    year, month = range_start.year, range_start.month
    while (year, month) <= (range_end.year, range_end.month):
        yield year, month
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)


def last_day_of_month(year: int, month: int) -> int:
    return monthrange(year, month)[1]


def clamp_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, last_day_of_month(year, month)))


def sunday_based_weekday(value: date) -> int:
    return (value.weekday() + 1) % 7


def adjust_to_weekday(value: date) -> date:
    weekday = sunday_based_weekday(value)
    if weekday == 6:
        return value - timedelta(days=1)
    if weekday == 0:
        return value - timedelta(days=2)
    return value


def describe_schedule(schedule_kind: str, detail: Any) -> str:
    try:
        kind = normalize_schedule_kind(schedule_kind)
    except UnknownScheduleKind:
        return str(schedule_kind)
    if kind in {"weekly", "biweekly"}:
        weekday = _lenient_weekday(detail)
        prefix = "Every" if kind == "weekly" else "Every other"
        return f"{prefix} {weekday}"
    if kind == "semimonthly":
        try:
            days = parse_detail(SemimonthlyDetail, detail, kind).days
        except ScheduleError:
            days = []
        if len(days) == 2:
            return f"{_ordinal(days[0])} and {_ordinal(days[1])} of each month"
        return "Twice monthly"
    return kind


def _generate_weekly(detail: WeeklyDetail, range_start: date, range_end: date) -> List[date]:
    if range_start > range_end:
        return []
    offset = (detail.weekday - sunday_based_weekday(range_start)) % WEEKLY_DAYS
    return list(
        iter_day_lattice(
            range_start + timedelta(days=offset), WEEKLY_DAYS, range_start, range_end
        )
    )


def _generate_semimonthly(
    detail: SemimonthlyDetail, range_start: date, range_end: date
) -> List[date]:
    dates: set[date] = set()
    for year, month in iter_months(range_start, range_end):
        for day in detail.days:
            occurrence = clamp_day(year, month, day)
            if detail.adjust_for_weekends:
                occurrence = adjust_to_weekday(occurrence)
            if range_start <= occurrence <= range_end:
                dates.add(occurrence)
    return sorted(dates)


def _validate_weekday(weekday: int, kind: str) -> None:
    if not 0 <= weekday <= 6:
        raise MalformedScheduleDetail(
            f"parsing {kind} schedule: weekday must be 0-6, got {weekday}"
        )


def _validate_days(days: list[int]) -> None:
    if len(days) != 2:
        raise InvalidDayCount(
            f"semimonthly schedule must have exactly 2 days, got {len(days)}"
        )
    for day in days:
        if not 1 <= day <= 31:
            raise MalformedScheduleDetail(
                f"parsing semimonthly schedule: day must be 1-31, got {day}"
            )


def _lenient_weekday(detail: Any) -> str:
    try:
        weekday = parse_detail(WeeklyDetail, detail, "weekly").weekday
    except ScheduleError:
        weekday = 0
    if 0 <= weekday <= 6:
        return WEEKDAY_NAMES[weekday]
    return f"weekday {weekday}"


def _ordinal(day: int) -> str:
    if 10 <= day % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"
