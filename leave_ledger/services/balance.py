"""Read side of the ledger: balances, projections and the per-year summary."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlmodel import col

from leave_ledger.clock import get_clock
from leave_ledger.config import LeaveCreditRules, get_rules
from leave_ledger.models.carryover import LeaveCreditCarryover
from leave_ledger.models.enums import LeaveRequestStatus
from leave_ledger.models.ledger import CARRYOVER_MONTH, LeaveCredit
from leave_ledger.models.request import LeaveRequest
from leave_ledger.schemas.credit import (
    CarryoverListResponse,
    CarryoverResponse,
    CreditSummaryResponse,
    LeaveCreditResponse,
    LedgerListResponse,
    ProjectionResponse,
)
from leave_ledger.services.accrual import compute_accrual_date, get_monthly_rate
from leave_ledger.services.eligibility import (
    carryover_usable_until,
    get_regularization_date,
    is_eligible,
    is_regularized,
)
from leave_ledger.services.ledger import carryover_is_usable, get_carryover_into

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.clock import Clock
    from leave_ledger.services.employee import EmployeeInfo

ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


async def get_credit_entries(session: AsyncSession, user_id: uuid.UUID, year: int) -> list[LeaveCredit]:
    """All of a user's rows for the year, month 0 first. No lock."""
    result = await session.execute(
        select(LeaveCredit)
        .where(
            col(LeaveCredit.user_id) == user_id,
            col(LeaveCredit.year) == year,
        )
        .order_by(col(LeaveCredit.month))
    )
    return list(result.scalars().all())


def carryover_counts_toward_balance(
    carryover: LeaveCreditCarryover,
    hired_date: date | None,
    today: date,
    rules: LeaveCreditRules,
) -> bool:
    """Whether carryover into a year is part of that year's available balance today."""
    if carryover.cash_converted:
        return False
    # Hired in the source year: nothing carries until regularized.
    in_source_year = hired_date is not None and hired_date.year == carryover.from_year
    if in_source_year and not is_regularized(hired_date, today, rules):
        return False
    if carryover.is_first_regularization:
        return True
    return today <= carryover_usable_until(carryover.from_year, rules)


def _carryover_amount(carryover: LeaveCreditCarryover, entries: list[LeaveCredit]) -> Decimal:
    """Month-0 balance when materialized, otherwise the recorded carryover."""
    for entry in entries:
        if entry.month == CARRYOVER_MONTH:
            return entry.credits_balance
    return carryover.carryover_credits


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------


async def get_total_earned(session: AsyncSession, user_id: uuid.UUID, year: int) -> Decimal:
    """Credits accrued in months 1-12; carryover is not earned."""
    entries = await get_credit_entries(session, user_id, year)
    return sum((e.credits_earned for e in entries if e.month != CARRYOVER_MONTH), ZERO)


async def get_total_used(session: AsyncSession, user_id: uuid.UUID, year: int) -> Decimal:
    """Credits used across every row of the year, carryover included."""
    entries = await get_credit_entries(session, user_id, year)
    return sum((e.credits_used for e in entries), ZERO)


async def get_balance(
    session: AsyncSession,
    employee: EmployeeInfo,
    year: int | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> Decimal:
    """Monthly balances for the year plus whatever carryover still counts today."""
    rules = rules or get_rules()
    today = (clock or get_clock()).today()
    year = year if year is not None else today.year

    entries = await get_credit_entries(session, employee.id, year)
    balance = sum((e.credits_balance for e in entries if e.month != CARRYOVER_MONTH), ZERO)

    carryover = await get_carryover_into(session, employee.id, year)
    if carryover is not None and carryover_counts_toward_balance(carryover, employee.hired_date, today, rules):
        balance += _carryover_amount(carryover, entries)

    return balance


async def get_deductible_balance(
    session: AsyncSession,
    employee: EmployeeInfo,
    year: int,
    leave_start: date,
    *,
    rules: LeaveCreditRules | None = None,
) -> Decimal:
    """What the deduction engine could take from ``year`` for a leave starting on ``leave_start``.

    Carryover is judged by the leave start, not today, so a leave after the
    carryover deadline is never funded by carryover even when filed before it.
    """
    rules = rules or get_rules()
    entries = await get_credit_entries(session, employee.id, year)
    balance = sum((e.credits_balance for e in entries if e.month != CARRYOVER_MONTH), ZERO)

    carryover = await get_carryover_into(session, employee.id, year)
    if carryover is not None and carryover_is_usable(carryover, leave_start, rules):
        balance += _carryover_amount(carryover, entries)

    return balance


async def get_pending_credits(
    session: AsyncSession,
    user_id: uuid.UUID,
    *,
    rules: LeaveCreditRules | None = None,
) -> Decimal:
    """Days requested by the user's pending VL/SL/BL requests."""
    rules = rules or get_rules()
    result = await session.execute(
        select(LeaveRequest).where(
            col(LeaveRequest.user_id) == user_id,
            col(LeaveRequest.status) == LeaveRequestStatus.PENDING.value,
            col(LeaveRequest.leave_type).in_(rules.credit_leave_types),
        )
    )
    return sum((r.days_requested for r in result.scalars().all()), ZERO)


def pending_accrual_dates(
    employee: EmployeeInfo,
    year: int,
    posted_months: set[int],
    today: date,
    target_date: date,
    rules: LeaveCreditRules,
) -> list[date]:
    """Accrual dates in ``year`` not yet posted that fall between today and ``target_date``."""
    dates: list[date] = []
    for month in range(1, 13):
        if month in posted_months:
            continue
        accrual_date = compute_accrual_date(employee.hired_date, year, month, rules)
        if accrual_date is not None and today <= accrual_date <= target_date:
            dates.append(accrual_date)
    return dates


async def get_projection(
    session: AsyncSession,
    employee: EmployeeInfo,
    target_date: date,
    year: int | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> ProjectionResponse:
    """Current balance plus one monthly rate per accrual still due by ``target_date``."""
    rules = rules or get_rules()
    clock = clock or get_clock()
    today = clock.today()
    year = year if year is not None else today.year

    balance = await get_balance(session, employee, year, rules=rules, clock=clock)
    entries = await get_credit_entries(session, employee.id, year)
    posted = {e.month for e in entries}
    upcoming = pending_accrual_dates(employee, year, posted, today, target_date, rules)
    return ProjectionResponse(
        user_id=employee.id,
        year=year,
        target_date=target_date,
        current_balance=balance,
        projected_balance=balance + get_monthly_rate(employee.role, rules) * len(upcoming),
        pending_accruals=len(upcoming),
    )


async def get_projected_balance(
    session: AsyncSession,
    employee: EmployeeInfo,
    target_date: date,
    year: int | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> Decimal:
    projection = await get_projection(session, employee, target_date, year, rules=rules, clock=clock)
    return projection.projected_balance


async def list_credit_entries(session: AsyncSession, user_id: uuid.UUID, year: int) -> LedgerListResponse:
    entries = await get_credit_entries(session, user_id, year)
    items = [LeaveCreditResponse.model_validate(e) for e in entries]
    return LedgerListResponse(items=items, total=len(items))


async def list_carryovers(session: AsyncSession, user_id: uuid.UUID) -> CarryoverListResponse:
    """Every carryover record for the user, most recent first."""
    result = await session.execute(
        select(LeaveCreditCarryover)
        .where(col(LeaveCreditCarryover.user_id) == user_id)
        .order_by(col(LeaveCreditCarryover.from_year).desc())
    )
    items = [CarryoverResponse.model_validate(c) for c in result.scalars().all()]
    return CarryoverListResponse(items=items, total=len(items))


async def get_summary(
    session: AsyncSession,
    employee: EmployeeInfo,
    year: int | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> CreditSummaryResponse:
    """Year overview: eligibility, rate, earned/used, balance, pending and carryover."""
    rules = rules or get_rules()
    clock = clock or get_clock()
    today = clock.today()
    year = year if year is not None else today.year

    entries = await get_credit_entries(session, employee.id, year)
    carryover = await get_carryover_into(session, employee.id, year)

    carryover_balance = ZERO
    carryover_expires_on: date | None = None
    if carryover is not None:
        if carryover_counts_toward_balance(carryover, employee.hired_date, today, rules):
            carryover_balance = _carryover_amount(carryover, entries)
        if not carryover.is_first_regularization:
            carryover_expires_on = carryover_usable_until(carryover.from_year, rules)

    return CreditSummaryResponse(
        user_id=employee.id,
        year=year,
        is_eligible=is_eligible(employee.hired_date, today, rules),
        eligibility_date=get_regularization_date(employee.hired_date, rules),
        monthly_rate=get_monthly_rate(employee.role, rules),
        total_earned=sum((e.credits_earned for e in entries if e.month != CARRYOVER_MONTH), ZERO),
        total_used=sum((e.credits_used for e in entries), ZERO),
        balance=await get_balance(session, employee, year, rules=rules, clock=clock),
        pending_credits=await get_pending_credits(session, employee.id, rules=rules),
        carryover=CarryoverResponse.model_validate(carryover) if carryover is not None else None,
        carryover_balance=carryover_balance,
        carryover_expires_on=carryover_expires_on,
        credits=[LeaveCreditResponse.model_validate(e) for e in entries],
    )
