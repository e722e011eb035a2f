import logging
import os
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    and_,
    create_engine,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError

from paycycle.auto_assign import BillRule, CandidatePeriod, ExistingAssignment, auto_assign
from paycycle.optimizer import (
    BALANCE_THRESHOLD,
    MAX_ITERATIONS,
    OptAssignment,
    OptBill,
    OptPeriod,
    optimize,
    plan_moves,
)
from paycycle.pay_periods import IncomeSource, plan_pay_periods
from paycycle.schedules import ScheduleError, add_months, describe_schedule, generate
from paycycle.surplus_detector import detect_surplus

logger = logging.getLogger(__name__)
logging.getLogger("paycycle").setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./paycycle.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)
metadata = MetaData()


def get_balance_threshold() -> Decimal:
    raw = os.getenv("OPTIMIZER_BALANCE_THRESHOLD")
    if not raw:
        return BALANCE_THRESHOLD
    try:
        return Decimal(raw)
    except InvalidOperation:
        return BALANCE_THRESHOLD


def get_max_iterations() -> int:
    raw = os.getenv("OPTIMIZER_MAX_ITERATIONS")
    if not raw:
        return MAX_ITERATIONS
    try:
        return int(raw)
    except ValueError:
        return MAX_ITERATIONS


OPTIMIZER_BALANCE_THRESHOLD = get_balance_threshold()
OPTIMIZER_MAX_ITERATIONS = get_max_iterations()

income_sources = Table(
    "income_sources",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("pay_schedule", String(20), nullable=False),
    Column("schedule_detail", JSON, nullable=False),
    Column("default_amount", Numeric(10, 2)),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

pay_periods = Table(
    "pay_periods",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("income_source_id", Integer, ForeignKey("income_sources.id"), nullable=False),
    Column("pay_date", Date, nullable=False),
    Column("expected_amount", Numeric(10, 2)),
    Column("actual_amount", Numeric(10, 2)),
    Column("notes", String(500)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("income_source_id", "pay_date", name="uq_pay_periods_source_date"),
)

bills = Table(
    "bills",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("default_amount", Numeric(10, 2)),
    Column("due_day", Integer),
    Column("recurrence", String(20), nullable=False, server_default="monthly"),
    Column("recurrence_detail", JSON),
    Column("category", String(100)),
    Column("notes", String(500)),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("sort_order", Integer, nullable=False, default=0),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

bill_assignments = Table(
    "bill_assignments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("bill_id", Integer, ForeignKey("bills.id"), nullable=False),
    Column("pay_period_id", Integer, ForeignKey("pay_periods.id"), nullable=False),
    Column("planned_amount", Numeric(10, 2)),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("notes", String(500)),
    Column("manually_moved", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("bill_id", "pay_period_id", name="uq_bill_assignments_bill_period"),
)


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)


class AssignmentStatus:
    values = {"pending", "paid", "deferred", "uncertain", "skipped"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid assignment status.")
        return normalized


class BillRecurrence:
    values = {"monthly", "biweekly", "quarterly", "annual"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid bill recurrence.")
        return normalized


class IncomeSourcePayload(BaseModel):
    name: str
    pay_schedule: str
    schedule_detail: dict
    default_amount: Decimal | None = None
    is_active: bool = True

    @classmethod
    def validate_payload(cls, payload: "IncomeSourcePayload") -> "IncomeSourcePayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Income source name required.")
        payload.pay_schedule = payload.pay_schedule.strip().lower().replace("-", "_")
        # an inverted range parses the detail without generating anything
        generate(payload.pay_schedule, payload.schedule_detail, date.max, date.min)
        if payload.default_amount is not None and payload.default_amount < 0:
            raise ValueError("Default amount must not be negative.")
        return payload


class IncomeSourceResponse(IncomeSourcePayload):
    id: int
    description: str
    created_at: datetime | None = None


class BillPayload(BaseModel):
    name: str
    default_amount: Decimal | None = None
    due_day: int | None = None
    recurrence: str = "monthly"
    recurrence_detail: dict | None = None
    category: str | None = None
    notes: str | None = None
    is_active: bool = True
    sort_order: int = 0

    @classmethod
    def validate_payload(cls, payload: "BillPayload") -> "BillPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Bill name required.")
        if payload.due_day is not None and not 1 <= payload.due_day <= 31:
            raise ValueError("Due day must be between 1 and 31.")
        payload.recurrence = BillRecurrence.validate(payload.recurrence)
        payload.category = payload.category.strip() if payload.category else None
        payload.notes = payload.notes.strip() if payload.notes else None
        return payload


class BillResponse(BillPayload):
    id: int
    created_at: datetime | None = None


class SchedulePreviewPayload(BaseModel):
    pay_schedule: str
    schedule_detail: dict
    start_date: date
    end_date: date


class SchedulePreviewResponse(BaseModel):
    pay_schedule: str
    description: str
    dates: list[date]


class PeriodResponse(BaseModel):
    id: int
    income_source_id: int
    source_name: str | None = None
    pay_date: date
    expected_amount: Decimal | None = None
    actual_amount: Decimal | None = None
    notes: str | None = None
    total_bills: Decimal = Decimal("0")
    remaining: Decimal | None = None


class GeneratePeriodsPayload(BaseModel):
    start_date: date
    end_date: date
    source_ids: list[int] | None = None


class GeneratePeriodsResponse(BaseModel):
    created: list[PeriodResponse]
    errors: dict[int, str]


class AssignmentPayload(BaseModel):
    bill_id: int
    pay_period_id: int
    planned_amount: Decimal | None = None
    status: str = "pending"
    notes: str | None = None


class AssignmentResponse(BaseModel):
    id: int
    bill_id: int
    bill_name: str | None = None
    pay_period_id: int
    planned_amount: Decimal | None = None
    status: str
    notes: str | None = None
    manually_moved: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class StatusPayload(BaseModel):
    status: str


class AutoAssignPayload(BaseModel):
    start_date: date
    end_date: date
    force: bool = False


class AutoAssignResponse(BaseModel):
    created: list[AssignmentResponse]
    replaced_ids: list[int]
    errors: dict[int, str]


class ResetManualMovesPayload(BaseModel):
    start_date: date
    end_date: date
    bill_ids: list[int] | None = None


class OptimizePayload(BaseModel):
    start_date: date
    end_date: date


class SuggestionResponse(BaseModel):
    assignment_id: int | None = None
    bill_id: int
    bill_name: str
    from_period_id: int
    to_period_id: int
    from_period: date
    to_period: date
    amount: Decimal
    reason: str


class MovePayload(BaseModel):
    assignment_id: int
    to_period_id: int


class OptimizationResponse(BaseModel):
    suggestions: list[SuggestionResponse]
    moves: list[MovePayload]
    current_min_balance: Decimal
    optimized_min_balance: Decimal
    improvement: Decimal


class ApplyMovesPayload(BaseModel):
    moves: list[MovePayload]


class SurplusMonthResponse(BaseModel):
    month: str
    month_key: str
    source_id: int
    source: str
    extra_checks: int
    surplus_amount: Decimal


class SurplusResponse(BaseModel):
    surplus_months: list[SurplusMonthResponse]
    annual_surplus: Decimal


def require_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="Start date must be on or before end date.")


def income_source_from_row(row) -> IncomeSource:
    return IncomeSource(
        id=row["id"],
        name=row["name"],
        pay_schedule=row["pay_schedule"],
        schedule_detail=row["schedule_detail"],
        default_amount=row["default_amount"],
        is_active=row["is_active"],
    )


def assignment_response(row, bill_name: str | None = None) -> AssignmentResponse:
    return AssignmentResponse(
        id=row["id"],
        bill_id=row["bill_id"],
        bill_name=bill_name if bill_name is not None else row.get("bill_name"),
        pay_period_id=row["pay_period_id"],
        planned_amount=row["planned_amount"],
        status=row["status"],
        notes=row["notes"],
        manually_moved=row["manually_moved"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def period_response(row, total_bills: Decimal | None = None) -> PeriodResponse:
    total = Decimal(str(total_bills)) if total_bills is not None else Decimal("0")
    expected = row["expected_amount"]
    return PeriodResponse(
        id=row["id"],
        income_source_id=row["income_source_id"],
        source_name=row.get("source_name"),
        pay_date=row["pay_date"],
        expected_amount=expected,
        actual_amount=row["actual_amount"],
        notes=row["notes"],
        total_bills=total,
        remaining=expected - total if expected is not None else None,
    )


def periods_in_range(start_date: date, end_date: date):
    return select(pay_periods.c.id).where(
        pay_periods.c.pay_date >= start_date,
        pay_periods.c.pay_date <= end_date,
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/income-sources", response_model=list[IncomeSourceResponse])
def list_income_sources() -> list[IncomeSourceResponse]:
    with engine.begin() as conn:
        rows = conn.execute(
            select(income_sources).order_by(income_sources.c.id)
        ).mappings().all()
    return [
        IncomeSourceResponse(
            id=row["id"],
            name=row["name"],
            pay_schedule=row["pay_schedule"],
            schedule_detail=row["schedule_detail"],
            default_amount=row["default_amount"],
            is_active=row["is_active"],
            description=describe_schedule(row["pay_schedule"], row["schedule_detail"]),
            created_at=row["created_at"],
        )
        for row in rows
    ]


@app.post("/income-sources", response_model=IncomeSourceResponse)
def create_income_source(payload: IncomeSourcePayload) -> IncomeSourceResponse:
    try:
        payload = IncomeSourcePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(income_sources)
        .values(
            name=payload.name,
            pay_schedule=payload.pay_schedule,
            schedule_detail=payload.schedule_detail,
            default_amount=payload.default_amount,
            is_active=payload.is_active,
        )
        .returning(income_sources.c.id, income_sources.c.created_at)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create income source.")
    return IncomeSourceResponse(
        **payload.model_dump(),
        id=row["id"],
        description=describe_schedule(payload.pay_schedule, payload.schedule_detail),
        created_at=row["created_at"],
    )


@app.get("/bills", response_model=list[BillResponse])
def list_bills() -> list[BillResponse]:
    with engine.begin() as conn:
        rows = conn.execute(
            select(bills).order_by(bills.c.sort_order, bills.c.id)
        ).mappings().all()
    return [
        BillResponse(
            id=row["id"],
            name=row["name"],
            default_amount=row["default_amount"],
            due_day=row["due_day"],
            recurrence=row["recurrence"],
            recurrence_detail=row["recurrence_detail"],
            category=row["category"],
            notes=row["notes"],
            is_active=row["is_active"],
            sort_order=row["sort_order"],
            created_at=row["created_at"],
        )
        for row in rows
    ]


@app.post("/bills", response_model=BillResponse)
def create_bill(payload: BillPayload) -> BillResponse:
    try:
        payload = BillPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(bills)
        .values(**payload.model_dump())
        .returning(bills.c.id, bills.c.created_at)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create bill.")
    return BillResponse(**payload.model_dump(), id=row["id"], created_at=row["created_at"])


@app.post("/schedules/preview", response_model=SchedulePreviewResponse)
def preview_schedule(payload: SchedulePreviewPayload) -> SchedulePreviewResponse:
    try:
        dates = generate(
            payload.pay_schedule,
            payload.schedule_detail,
            payload.start_date,
            payload.end_date,
        )
    except ScheduleError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return SchedulePreviewResponse(
        pay_schedule=payload.pay_schedule,
        description=describe_schedule(payload.pay_schedule, payload.schedule_detail),
        dates=dates,
    )


@app.get("/periods", response_model=list[PeriodResponse])
def list_periods(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
) -> list[PeriodResponse]:
    if start_date is None or end_date is None:
        start_date = date.today()
        end_date = add_months(start_date, 3)
    require_range(start_date, end_date)

    totals = (
        select(
            bill_assignments.c.pay_period_id,
            func.sum(bill_assignments.c.planned_amount).label("total_bills"),
        )
        .group_by(bill_assignments.c.pay_period_id)
        .subquery()
    )
    with engine.begin() as conn:
        rows = conn.execute(
            select(
                pay_periods,
                income_sources.c.name.label("source_name"),
                totals.c.total_bills,
            )
            .join(income_sources, income_sources.c.id == pay_periods.c.income_source_id)
            .outerjoin(totals, totals.c.pay_period_id == pay_periods.c.id)
            .where(
                pay_periods.c.pay_date >= start_date,
                pay_periods.c.pay_date <= end_date,
            )
            .order_by(pay_periods.c.pay_date, pay_periods.c.id)
        ).mappings().all()
    return [period_response(row, row["total_bills"]) for row in rows]


@app.post("/periods/generate", response_model=GeneratePeriodsResponse)
def generate_periods(payload: GeneratePeriodsPayload) -> GeneratePeriodsResponse:
    require_range(payload.start_date, payload.end_date)

    query = select(income_sources).where(income_sources.c.is_active.is_(True))
    if payload.source_ids:
        query = query.where(income_sources.c.id.in_(payload.source_ids))

    created: list[PeriodResponse] = []
    with engine.begin() as conn:
        source_rows = conn.execute(query.order_by(income_sources.c.id)).mappings().all()
        sources = [income_source_from_row(row) for row in source_rows]
        names = {row["id"]: row["name"] for row in source_rows}
        existing = conn.execute(
            select(pay_periods.c.income_source_id, pay_periods.c.pay_date).where(
                pay_periods.c.pay_date >= payload.start_date,
                pay_periods.c.pay_date <= payload.end_date,
            )
        ).all()
        plan = plan_pay_periods(
            sources,
            payload.start_date,
            payload.end_date,
            [(row.income_source_id, row.pay_date) for row in existing],
        )
        for draft in plan.new_periods:
            row = conn.execute(
                insert(pay_periods)
                .values(
                    income_source_id=draft.income_source_id,
                    pay_date=draft.pay_date,
                    expected_amount=draft.expected_amount,
                )
                .returning(*pay_periods.c)
            ).mappings().first()
            period = period_response(row)
            period.source_name = names.get(draft.income_source_id)
            created.append(period)

    logger.info("Generated %s pay periods", len(created))
    return GeneratePeriodsResponse(created=created, errors=plan.errors)


@app.get("/assignments", response_model=list[AssignmentResponse])
def list_assignments(
    period_id: int | None = Query(None),
    bill_id: int | None = Query(None),
    status: str | None = Query(None),
) -> list[AssignmentResponse]:
    query = select(bill_assignments, bills.c.name.label("bill_name")).join(
        bills, bills.c.id == bill_assignments.c.bill_id
    )
    if period_id is not None:
        query = query.where(bill_assignments.c.pay_period_id == period_id)
    if bill_id is not None:
        query = query.where(bill_assignments.c.bill_id == bill_id)
    if status:
        query = query.where(bill_assignments.c.status == status.strip().lower())

    with engine.begin() as conn:
        rows = conn.execute(
            query.order_by(bills.c.sort_order, bills.c.id, bill_assignments.c.id)
        ).mappings().all()
    return [assignment_response(row) for row in rows]


@app.post("/assignments", response_model=AssignmentResponse)
def create_assignment(payload: AssignmentPayload) -> AssignmentResponse:
    try:
        status = AssignmentStatus.validate(payload.status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(bill_assignments)
        .values(
            bill_id=payload.bill_id,
            pay_period_id=payload.pay_period_id,
            planned_amount=payload.planned_amount,
            status=status,
            notes=payload.notes,
            manually_moved=True,
        )
        .returning(*bill_assignments.c)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Bill is already assigned to this period.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create assignment.")
    return assignment_response(row)


@app.patch("/assignments/{assignment_id}/status", response_model=AssignmentResponse)
def update_assignment_status(assignment_id: int, payload: StatusPayload) -> AssignmentResponse:
    try:
        status = AssignmentStatus.validate(payload.status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        row = conn.execute(
            update(bill_assignments)
            .where(bill_assignments.c.id == assignment_id)
            .values(status=status, updated_at=func.now())
            .returning(*bill_assignments.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Assignment not found.")
    return assignment_response(row)


@app.post("/assignments/auto-assign", response_model=AutoAssignResponse)
def auto_assign_bills(payload: AutoAssignPayload) -> AutoAssignResponse:
    require_range(payload.start_date, payload.end_date)

    with engine.begin() as conn:
        bill_rows = conn.execute(
            select(bills)
            .where(bills.c.is_active.is_(True), bills.c.due_day.is_not(None))
            .order_by(bills.c.id)
        ).mappings().all()
        period_rows = conn.execute(
            select(pay_periods.c.id, pay_periods.c.pay_date)
            .join(income_sources, income_sources.c.id == pay_periods.c.income_source_id)
            .where(
                pay_periods.c.pay_date >= payload.start_date,
                pay_periods.c.pay_date <= payload.end_date,
                income_sources.c.is_active.is_(True),
            )
            .order_by(pay_periods.c.pay_date, pay_periods.c.id)
        ).all()
        existing_rows = conn.execute(
            select(
                bill_assignments.c.id,
                bill_assignments.c.bill_id,
                bill_assignments.c.pay_period_id,
                bill_assignments.c.manually_moved,
                pay_periods.c.pay_date,
            )
            .join(pay_periods, pay_periods.c.id == bill_assignments.c.pay_period_id)
            .where(
                pay_periods.c.pay_date >= payload.start_date,
                pay_periods.c.pay_date <= payload.end_date,
            )
        ).all()

        names = {row["id"]: row["name"] for row in bill_rows}
        result = auto_assign(
            [
                BillRule(
                    id=row["id"],
                    name=row["name"],
                    due_day=row["due_day"],
                    default_amount=row["default_amount"],
                    recurrence=row["recurrence"],
                    recurrence_detail=row["recurrence_detail"],
                )
                for row in bill_rows
            ],
            [CandidatePeriod(id=row.id, pay_date=row.pay_date) for row in period_rows],
            [
                ExistingAssignment(
                    bill_id=row.bill_id,
                    period_id=row.pay_period_id,
                    pay_date=row.pay_date,
                    manually_moved=row.manually_moved,
                    assignment_id=row.id,
                )
                for row in existing_rows
            ],
            payload.start_date,
            payload.end_date,
            force=payload.force,
        )

        replaced_ids = [item.assignment_id for item in result.replaced]
        if replaced_ids:
            conn.execute(delete(bill_assignments).where(bill_assignments.c.id.in_(replaced_ids)))

        created: list[AssignmentResponse] = []
        for assignment in result.created:
            row = conn.execute(
                insert(bill_assignments)
                .values(
                    bill_id=assignment.bill_id,
                    pay_period_id=assignment.period_id,
                    planned_amount=assignment.planned_amount,
                    status="pending",
                    manually_moved=False,
                )
                .returning(*bill_assignments.c)
            ).mappings().first()
            created.append(assignment_response(row, names.get(assignment.bill_id)))

    logger.info(
        "Auto-assign created %s assignments, replaced %s", len(created), len(replaced_ids)
    )
    return AutoAssignResponse(created=created, replaced_ids=replaced_ids, errors=result.errors)


@app.post("/assignments/reset-manual-moves")
def reset_manual_moves(payload: ResetManualMovesPayload) -> dict:
    require_range(payload.start_date, payload.end_date)

    conditions = [
        bill_assignments.c.pay_period_id.in_(
            periods_in_range(payload.start_date, payload.end_date)
        )
    ]
    if payload.bill_ids:
        conditions.append(bill_assignments.c.bill_id.in_(payload.bill_ids))

    with engine.begin() as conn:
        result = conn.execute(
            update(bill_assignments)
            .where(and_(*conditions))
            .values(manually_moved=False, updated_at=func.now())
        )
    return {"reset_count": result.rowcount}


@app.post("/optimizer/suggest", response_model=OptimizationResponse)
def suggest_moves(payload: OptimizePayload) -> OptimizationResponse:
    require_range(payload.start_date, payload.end_date)

    with engine.begin() as conn:
        bill_rows = conn.execute(
            select(
                bills.c.id,
                bills.c.name,
                bills.c.due_day,
                func.coalesce(bills.c.default_amount, 0).label("amount"),
            ).where(bills.c.is_active.is_(True), bills.c.due_day.is_not(None))
        ).all()
        period_rows = conn.execute(
            select(
                pay_periods.c.id,
                pay_periods.c.pay_date,
                func.coalesce(pay_periods.c.expected_amount, 0).label("income"),
            )
            .where(
                pay_periods.c.pay_date >= payload.start_date,
                pay_periods.c.pay_date <= payload.end_date,
            )
            .order_by(pay_periods.c.pay_date)
        ).all()
        assignment_rows = conn.execute(
            select(
                bill_assignments.c.id,
                bill_assignments.c.bill_id,
                bill_assignments.c.pay_period_id,
                bill_assignments.c.planned_amount,
            ).where(
                bill_assignments.c.pay_period_id.in_(
                    periods_in_range(payload.start_date, payload.end_date)
                )
            )
        ).all()

    result = optimize(
        [
            OptBill(id=row.id, name=row.name, due_day=row.due_day, amount=row.amount)
            for row in bill_rows
        ],
        [OptPeriod(id=row.id, pay_date=row.pay_date, income=row.income) for row in period_rows],
        [
            OptAssignment(
                bill_id=row.bill_id,
                period_id=row.pay_period_id,
                assignment_id=row.id,
                amount=row.planned_amount,
            )
            for row in assignment_rows
        ],
        balance_threshold=OPTIMIZER_BALANCE_THRESHOLD,
        max_iterations=OPTIMIZER_MAX_ITERATIONS,
    )
    return OptimizationResponse(
        suggestions=[
            SuggestionResponse(
                assignment_id=suggestion.assignment_id,
                bill_id=suggestion.bill_id,
                bill_name=suggestion.bill_name,
                from_period_id=suggestion.from_period_id,
                to_period_id=suggestion.to_period_id,
                from_period=suggestion.from_period,
                to_period=suggestion.to_period,
                amount=suggestion.amount,
                reason=suggestion.reason,
            )
            for suggestion in result.suggestions
        ],
        moves=[
            MovePayload(assignment_id=move.assignment_id, to_period_id=move.to_period_id)
            for move in plan_moves(result.suggestions)
        ],
        current_min_balance=result.current_min_balance,
        optimized_min_balance=result.optimized_min_balance,
        improvement=result.improvement,
    )


@app.post("/optimizer/apply", response_model=list[AssignmentResponse])
def apply_moves(payload: ApplyMovesPayload) -> list[AssignmentResponse]:
    """Apply moves one transaction at a time.

    The first failing move aborts the request; moves applied before it stay
    committed.
    """
    if not payload.moves:
        raise HTTPException(status_code=400, detail="No moves specified.")

    applied: list[AssignmentResponse] = []
    for move in payload.moves:
        with engine.begin() as conn:
            current = conn.execute(
                select(bill_assignments.c.bill_id, bill_assignments.c.planned_amount).where(
                    bill_assignments.c.id == move.assignment_id
                )
            ).first()
            if not current:
                raise HTTPException(
                    status_code=404, detail=f"Assignment {move.assignment_id} not found."
                )
            target = conn.execute(
                select(pay_periods.c.id).where(pay_periods.c.id == move.to_period_id)
            ).first()
            if not target:
                raise HTTPException(
                    status_code=404, detail=f"Pay period {move.to_period_id} not found."
                )

            conn.execute(delete(bill_assignments).where(bill_assignments.c.id == move.assignment_id))
            existing_id = conn.execute(
                select(bill_assignments.c.id).where(
                    bill_assignments.c.bill_id == current.bill_id,
                    bill_assignments.c.pay_period_id == move.to_period_id,
                )
            ).scalar_one_or_none()
            if existing_id is None:
                stmt = insert(bill_assignments).values(
                    bill_id=current.bill_id,
                    pay_period_id=move.to_period_id,
                    planned_amount=current.planned_amount,
                    status="pending",
                    manually_moved=True,
                )
            else:
                stmt = (
                    update(bill_assignments)
                    .where(bill_assignments.c.id == existing_id)
                    .values(
                        planned_amount=current.planned_amount,
                        manually_moved=True,
                        updated_at=func.now(),
                    )
                )
            row = conn.execute(stmt.returning(*bill_assignments.c)).mappings().first()
        applied.append(assignment_response(row))

    logger.info("Applied %s optimizer moves", len(applied))
    return applied


@app.get("/optimizer/surplus", response_model=SurplusResponse)
def surplus_months(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
) -> SurplusResponse:
    if start_date is None or end_date is None:
        year = date.today().year
        start_date, end_date = date(year, 1, 1), date(year, 12, 31)
    require_range(start_date, end_date)

    with engine.begin() as conn:
        rows = conn.execute(
            select(income_sources)
            .where(income_sources.c.is_active.is_(True))
            .order_by(income_sources.c.id)
        ).mappings().all()

    result = detect_surplus(
        [income_source_from_row(row) for row in rows], start_date, end_date
    )
    return SurplusResponse(
        surplus_months=[
            SurplusMonthResponse(
                month=month.month,
                month_key=month.month_key,
                source_id=month.source_id,
                source=month.source,
                extra_checks=month.extra_checks,
                surplus_amount=month.surplus_amount,
            )
            for month in result.surplus_months
        ],
        annual_surplus=result.annual_surplus,
    )
