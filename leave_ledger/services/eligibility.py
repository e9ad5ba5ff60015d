"""Hire-date and calendar predicates shared by the engine and request validation.

Everything here is pure: callers pass "today" explicitly, usually from the
injected clock.
"""

from __future__ import annotations

from calendar import monthrange
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from leave_ledger.config import LeaveCreditRules
from leave_ledger.models.enums import AttendanceStatus

if TYPE_CHECKING:
    from collections.abc import Iterable

_DEFAULT_RULES = LeaveCreditRules()

# Statuses that count as an absence for the 30-day rule.
ABSENCE_STATUSES = frozenset(
    {
        AttendanceStatus.NCNS.value,
        AttendanceStatus.ADVISED_ABSENCE.value,
        AttendanceStatus.HALF_DAY_ABSENCE.value,
    }
)


def month_end(year: int, month: int) -> date:
    """Last calendar day of the month."""
    return date(year, month, monthrange(year, month)[1])


def add_months(value: date, months: int) -> date:
    """Shift a date by whole months, clamping the day to the target month's length.

    Aug 31 + 6 months is Feb 28 (or 29), never an overflow into March.
    """
    total = value.year * 12 + (value.month - 1) + months
    year, month = divmod(total, 12)
    month += 1
    return date(year, month, min(value.day, monthrange(year, month)[1]))


def get_regularization_date(hired_date: date | None, rules: LeaveCreditRules = _DEFAULT_RULES) -> date | None:
    """Date the probation period ends (hire + 6 months)."""
    if hired_date is None:
        return None
    return add_months(hired_date, rules.probation_months)


def is_eligible(hired_date: date | None, today: date, rules: LeaveCreditRules = _DEFAULT_RULES) -> bool:
    """True once six months have elapsed since hire."""
    regularization = get_regularization_date(hired_date, rules)
    return regularization is not None and today >= regularization


# Regularization and credit eligibility share the same threshold.
is_regularized = is_eligible


def requires_credits(leave_type: str, rules: LeaveCreditRules = _DEFAULT_RULES) -> bool:
    """Only VL, SL and BL consume leave credits."""
    return leave_type in rules.credit_leave_types


def credit_usage_deadline(credit_year: int, rules: LeaveCreditRules = _DEFAULT_RULES) -> date:
    """Last day credits earned in ``credit_year`` can be used (March 31 of the next year)."""
    return date(credit_year + 1, rules.carryover_usable_until_month, rules.carryover_usable_until_day)


def carryover_usable_until(from_year: int, rules: LeaveCreditRules = _DEFAULT_RULES) -> date:
    """Last leave start date an ordinary carryover out of ``from_year`` can cover."""
    return credit_usage_deadline(from_year, rules)


def has_recent_absence(
    absence_dates: Iterable[date],
    reference: date,
    rules: LeaveCreditRules = _DEFAULT_RULES,
) -> bool:
    """True if any absence falls within the 30 days up to ``reference``."""
    window_start = reference - timedelta(days=rules.absence_window_days)
    return any(window_start <= d <= reference for d in absence_dates)


def get_next_eligible_leave_date(
    last_absence: date | None,
    today: date,
    rules: LeaveCreditRules = _DEFAULT_RULES,
) -> date:
    """Earliest date a VL/BL can be filed after the most recent absence."""
    if last_absence is None:
        return today
    return last_absence + timedelta(days=rules.absence_window_days)


def earliest_advance_notice_date(today: date, rules: LeaveCreditRules = _DEFAULT_RULES) -> date:
    return today + timedelta(days=rules.advance_notice_days)


def requires_short_notice_override(
    leave_type: str,
    start_date: date,
    today: date,
    rules: LeaveCreditRules = _DEFAULT_RULES,
) -> bool:
    """True when a VL/BL starts sooner than the two-week notice period."""
    if leave_type not in rules.advance_notice_leave_types:
        return False
    return start_date < earliest_advance_notice_date(today, rules)


def sick_leave_window(today: date, rules: LeaveCreditRules = _DEFAULT_RULES) -> tuple[date, date]:
    """(earliest start, latest end) for a sick leave filed today."""
    earliest = today - timedelta(days=rules.sick_leave_lookback_days)
    latest = add_months(today, rules.sick_leave_lookahead_months)
    return earliest, latest


def is_within_sick_leave_window(
    start_date: date,
    end_date: date,
    today: date,
    rules: LeaveCreditRules = _DEFAULT_RULES,
) -> bool:
    earliest, latest = sick_leave_window(today, rules)
    return start_date >= earliest and end_date <= latest


def calculate_working_days(start_date: date, end_date: date) -> Decimal:
    """Count Monday-Friday days in the inclusive range."""
    days = 0
    current = start_date
    while current <= end_date:
        if current.weekday() < 5:
            days += 1
        current += timedelta(days=1)
    return Decimal(days)
