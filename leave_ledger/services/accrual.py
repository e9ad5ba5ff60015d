"""Accrual engine: monthly leave credit posting, backfill and the all-users batch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlmodel import col

from leave_ledger.clock import get_clock
from leave_ledger.config import LeaveCreditRules, get_rules
from leave_ledger.models.enums import AuditAction, AuditEntityType
from leave_ledger.models.ledger import LeaveCredit
from leave_ledger.services.audit import model_to_audit_dict, write_audit_log
from leave_ledger.services.eligibility import get_regularization_date, month_end
from leave_ledger.services.employee import list_accruing_employees

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.clock import Clock
    from leave_ledger.services.employee import EmployeeInfo

logger = logging.getLogger(__name__)

_DEFAULT_RULES = LeaveCreditRules()

# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class AccrualRunResult:
    """Summary of a monthly accrual run across all employees."""

    year: int
    month: int
    processed: int = 0
    accrued: int = 0
    skipped: int = 0
    errors: int = 0
    total_credits: Decimal = Decimal("0")


# ---------------------------------------------------------------------------
# Pure computation helpers (no DB)
# ---------------------------------------------------------------------------


def compute_accrual_date(
    hired_date: date | None,
    year: int,
    month: int,
    rules: LeaveCreditRules = _DEFAULT_RULES,
) -> date | None:
    """Return the date the (year, month) credit becomes due, or None if it never accrues.

    The hire month itself never accrues. Once an employee regularized strictly
    before the first of the month the credit posts on the last day of the month;
    before that it posts on the hire-day anniversary, clamped to the month's length.
    """
    if hired_date is None:
        return None
    if (year, month) == (hired_date.year, hired_date.month):
        return None

    period_start = date(year, month, 1)
    period_end = month_end(year, month)
    if period_end < hired_date:
        return None

    regularization = get_regularization_date(hired_date, rules)
    if regularization is not None and regularization < period_start:
        return period_end

    return date(year, month, min(hired_date.day, period_end.day))


def get_monthly_rate(role: str | None, rules: LeaveCreditRules = _DEFAULT_RULES) -> Decimal:
    """Monthly accrual rate for a role."""
    return rules.monthly_rate(role)


# ---------------------------------------------------------------------------
# DB-backed helpers
# ---------------------------------------------------------------------------


async def get_credit_entry(
    session: AsyncSession,
    user_id: uuid.UUID,
    year: int,
    month: int,
) -> LeaveCredit | None:
    result = await session.execute(
        select(LeaveCredit).where(
            col(LeaveCredit.user_id) == user_id,
            col(LeaveCredit.year) == year,
            col(LeaveCredit.month) == month,
        )
    )
    return result.scalar_one_or_none()


async def _accrue_monthly(
    session: AsyncSession,
    employee: EmployeeInfo,
    year: int,
    month: int,
    *,
    rules: LeaveCreditRules,
    today: date,
) -> tuple[LeaveCredit | None, bool]:
    """Accrue one month; returns (entry, created)."""
    accrual_date = compute_accrual_date(employee.hired_date, year, month, rules)
    if accrual_date is None:
        return None, False

    # Not due yet
    if today < accrual_date:
        return None, False

    existing = await get_credit_entry(session, employee.id, year, month)
    if existing is not None:
        return existing, False

    rate = get_monthly_rate(employee.role, rules)
    entry = LeaveCredit(
        user_id=employee.id,
        year=year,
        month=month,
        credits_earned=rate,
        credits_used=Decimal("0"),
        credits_balance=rate,
        accrued_at=accrual_date,
    )
    session.add(entry)
    await session.flush()

    await write_audit_log(
        session,
        user_id=employee.id,
        entity_type=AuditEntityType.LEAVE_CREDIT,
        entity_id=entry.id,
        action=AuditAction.ACCRUE,
        after_json=model_to_audit_dict(entry),
    )
    return entry, True


async def accrue_monthly(
    session: AsyncSession,
    employee: EmployeeInfo,
    year: int | None = None,
    month: int | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> LeaveCredit | None:
    """Post the monthly credit for (year, month) if it is due.

    Returns the existing row when already accrued, and None when the employee
    has no hire date, the month precedes or is the hire month, or the accrual
    date has not arrived yet. The caller commits.
    """
    today = (clock or get_clock()).today()
    entry, _ = await _accrue_monthly(
        session,
        employee,
        year if year is not None else today.year,
        month if month is not None else today.month,
        rules=rules or get_rules(),
        today=today,
    )
    return entry


async def backfill_credits(
    session: AsyncSession,
    employee: EmployeeInfo,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> int:
    """Accrue every missing, already-due month of the current year.

    Starts from January, or from the hire month when hired this year.
    Returns the number of rows created. The caller commits.
    """
    if employee.hired_date is None:
        return 0

    rules = rules or get_rules()
    today = (clock or get_clock()).today()
    year = today.year

    start_month = 1
    if employee.hired_date.year == year:
        start_month = employee.hired_date.month
    elif employee.hired_date.year > year:
        return 0

    created = 0
    for month in range(start_month, today.month + 1):
        _, was_created = await _accrue_monthly(session, employee, year, month, rules=rules, today=today)
        if was_created:
            created += 1
    return created


# ---------------------------------------------------------------------------
# Batch orchestration
# ---------------------------------------------------------------------------


async def run_monthly_accruals(
    session: AsyncSession,
    year: int | None = None,
    month: int | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> AccrualRunResult:
    """Accrue (year, month) for every active employee with a hire date.

    Each employee is committed on its own; a failure is logged, rolled back
    and counted without undoing the employees already processed. Re-running
    for the same month creates nothing new.
    """
    rules = rules or get_rules()
    today = (clock or get_clock()).today()
    year = year if year is not None else today.year
    month = month if month is not None else today.month

    result = AccrualRunResult(year=year, month=month)

    for employee in await list_accruing_employees():
        result.processed += 1
        try:
            entry, created = await _accrue_monthly(session, employee, year, month, rules=rules, today=today)
            if entry is None or not created:
                result.skipped += 1
                continue

            await session.commit()
            result.accrued += 1
            result.total_credits += entry.credits_earned
        except Exception:
            logger.exception("Error accruing leave credits for user=%s %d-%02d", employee.id, year, month)
            await session.rollback()
            result.errors += 1

    return result
