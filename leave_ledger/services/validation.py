"""Business validation for leave requests against the credit rules."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlmodel import col

from leave_ledger.clock import get_clock
from leave_ledger.config import LeaveCreditRules, get_rules
from leave_ledger.models.attendance import Attendance
from leave_ledger.models.enums import LeaveType
from leave_ledger.services.balance import get_deductible_balance
from leave_ledger.services.eligibility import (
    ABSENCE_STATUSES,
    calculate_working_days,
    credit_usage_deadline,
    get_next_eligible_leave_date,
    get_regularization_date,
    has_recent_absence,
    is_eligible,
    is_within_sick_leave_window,
    requires_short_notice_override,
    sick_leave_window,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.clock import Clock
    from leave_ledger.models.request import LeaveRequest
    from leave_ledger.schemas.credit import LeaveValidationPayload
    from leave_ledger.services.employee import EmployeeInfo

# Leave types that need notice, eligibility, a clean absence record and balance.
_PLANNED_LEAVE = frozenset({LeaveType.VACATION.value, LeaveType.BIRTHDAY.value})


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


def _fmt(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


async def get_absence_dates(
    session: AsyncSession,
    user_id: uuid.UUID,
    on_or_before: date,
    since: date | None = None,
) -> list[date]:
    """Shift dates with an absence status, newest first."""
    filters = [
        col(Attendance.user_id) == user_id,
        col(Attendance.status).in_(ABSENCE_STATUSES),
        col(Attendance.shift_date) <= on_or_before,
    ]
    if since is not None:
        filters.append(col(Attendance.shift_date) >= since)
    result = await session.execute(
        select(Attendance.shift_date).where(*filters).order_by(col(Attendance.shift_date).desc())
    )
    return list(result.scalars().all())


async def validate_leave_request(
    session: AsyncSession,
    employee: EmployeeInfo,
    data: LeaveValidationPayload,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> ValidationResult:
    """Collect every rule a prospective leave breaks. An empty list means valid."""
    rules = rules or get_rules()
    clock = clock or get_clock()
    today = clock.today()
    leave_type = data.leave_type
    is_planned = leave_type in _PLANNED_LEAVE
    errors: list[str] = []

    if data.end_date < data.start_date:
        errors.append("End date must be on or after the start date.")

    # Credits earned in a year run out on March 31 of the next.
    credits_year = data.credits_year if data.credits_year is not None else data.start_date.year
    if is_planned:
        deadline = credit_usage_deadline(credits_year, rules)
        if data.start_date > deadline or data.end_date > deadline:
            errors.append(
                f"Leave dates cannot be beyond {_fmt(deadline)}. "
                f"Credits from {credits_year} can only be used until then."
            )

    if is_planned and not is_eligible(employee.hired_date, today, rules):
        eligibility_date = get_regularization_date(employee.hired_date, rules)
        if eligibility_date is None:
            errors.append("You are not yet eligible to use leave credits: no hire date on record.")
        else:
            errors.append(
                f"You are not yet eligible to use leave credits. "
                f"Eligibility starts on {_fmt(eligibility_date)} (6 months after hire date)."
            )

    if (
        requires_short_notice_override(leave_type, data.start_date, today, rules)
        and not data.short_notice_override
    ):
        earliest = today + timedelta(days=rules.advance_notice_days)
        errors.append(
            f"Vacation and birthday leave must be filed at least 2 weeks in advance. "
            f"The earliest start date is {_fmt(earliest)}."
        )

    if leave_type == LeaveType.SICK.value and not is_within_sick_leave_window(
        data.start_date, data.end_date, today, rules
    ):
        earliest, latest = sick_leave_window(today, rules)
        errors.append(
            f"Sick leave must fall between {_fmt(earliest)} and {_fmt(latest)} "
            f"(up to 3 weeks back or 1 month ahead)."
        )

    if is_planned:
        window_start = data.start_date - timedelta(days=rules.absence_window_days)
        recent = await get_absence_dates(session, employee.id, data.start_date, since=window_start)
        if has_recent_absence(recent, data.start_date, rules):
            last_absence = recent[0]
            next_eligible = get_next_eligible_leave_date(last_absence, today, rules)
            errors.append(
                f"You had an absence on {_fmt(last_absence)} within 30 days of the leave start. "
                f"You can file vacation or birthday leave from {_fmt(next_eligible)}."
            )

    if is_planned and data.end_date >= data.start_date:
        requested = calculate_working_days(data.start_date, data.end_date)
        balance = await get_deductible_balance(session, employee, credits_year, data.start_date, rules=rules)
        if requested > balance:
            errors.append(f"Insufficient leave credits. You have {balance} days available but requested {requested}.")

    return ValidationResult(valid=not errors, errors=errors)


async def should_deduct_sl_credits(
    session: AsyncSession,
    employee: EmployeeInfo,
    leave_request: LeaveRequest,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> bool:
    """Sick leave is paid from credits only with a medical certificate, eligibility and enough balance.

    Otherwise it is recorded as unpaid time and the ledger is left alone.
    """
    rules = rules or get_rules()
    clock = clock or get_clock()

    if leave_request.leave_type != LeaveType.SICK.value:
        return False
    if not leave_request.medical_cert_submitted:
        return False
    if not is_eligible(employee.hired_date, clock.today(), rules):
        return False

    balance = await get_deductible_balance(
        session, employee, leave_request.start_date.year, leave_request.start_date, rules=rules
    )
    return balance >= leave_request.days_requested
