"""Carryover and regularization processing.

Year-end carryover: runs on Jan 1 and moves up to four unused credits from the
previous year into the new one, forfeiting the rest.
First regularization: runs daily and moves an employee's whole probation-year
balance into the following year, uncapped, once they pass probation.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlmodel import col

from leave_ledger.clock import get_clock
from leave_ledger.config import LeaveCreditRules, get_rules
from leave_ledger.models.carryover import LeaveCreditCarryover
from leave_ledger.models.enums import AuditAction, AuditEntityType
from leave_ledger.models.ledger import CARRYOVER_MONTH, LeaveCredit
from leave_ledger.schemas.credit import PendingRegularizationResponse, RegularizationInfoResponse
from leave_ledger.services.audit import model_to_audit_dict, write_audit_log
from leave_ledger.services.balance import get_balance, get_credit_entries
from leave_ledger.services.eligibility import get_regularization_date, is_regularized
from leave_ledger.services.employee import list_accruing_employees
from leave_ledger.services.ledger import check_entry_invariant

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.clock import Clock
    from leave_ledger.services.employee import EmployeeInfo

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class CarryoverRunResult:
    """Result of a year-end carryover run."""

    from_year: int
    to_year: int
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    total_carryover: Decimal = ZERO
    total_forfeited: Decimal = ZERO


@dataclass
class RegularizationRunResult:
    """Result of a first-regularization run."""

    year: int
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    total_transferred: Decimal = ZERO


@dataclass
class CashConversionResult:
    success: bool
    message: str
    credits_converted: Decimal = ZERO


@dataclass
class BulkCashConversionResult:
    to_year: int
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    total_converted: Decimal = ZERO


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def split_carryover(balance: Decimal, cap: Decimal) -> tuple[Decimal, Decimal]:
    """Return (carried, forfeited) for a year-end balance."""
    carried = min(balance, cap)
    return carried, max(ZERO, balance - cap)


def should_skip_year_end_carryover(
    hired_date: date | None,
    from_year: int,
    rules: LeaveCreditRules | None = None,
) -> bool:
    """True for employees hired in ``from_year`` who regularize the following year.

    Their probation credits move later through the first-regularization transfer.
    """
    if hired_date is None or hired_date.year != from_year:
        return False
    regularization = get_regularization_date(hired_date, rules or get_rules())
    return regularization is not None and regularization.year == from_year + 1


def crosses_year_boundary(hired_date: date | None, rules: LeaveCreditRules) -> bool:
    """Probation started in one calendar year and ends in the next."""
    regularization = get_regularization_date(hired_date, rules)
    return hired_date is not None and regularization is not None and regularization.year > hired_date.year


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_carryover(session: AsyncSession, user_id: uuid.UUID, from_year: int) -> LeaveCreditCarryover | None:
    result = await session.execute(
        select(LeaveCreditCarryover).where(
            col(LeaveCreditCarryover.user_id) == user_id,
            col(LeaveCreditCarryover.from_year) == from_year,
        )
    )
    return result.scalar_one_or_none()


async def get_first_regularization(session: AsyncSession, user_id: uuid.UUID) -> LeaveCreditCarryover | None:
    result = await session.execute(
        select(LeaveCreditCarryover).where(
            col(LeaveCreditCarryover.user_id) == user_id,
            col(LeaveCreditCarryover.is_first_regularization).is_(True),
        )
    )
    return result.scalars().first()


async def _probation_credits(session: AsyncSession, user_id: uuid.UUID, hire_year: int) -> tuple[Decimal, int]:
    """(balance, months accrued) of the hire-year monthly rows."""
    entries = await get_credit_entries(session, user_id, hire_year)
    monthly = [e for e in entries if e.month != CARRYOVER_MONTH]
    return sum((e.credits_balance for e in monthly), ZERO), len(monthly)


# ---------------------------------------------------------------------------
# Year-end carryover
# ---------------------------------------------------------------------------


async def process_carryover(
    session: AsyncSession,
    employee: EmployeeInfo,
    from_year: int | None = None,
    processed_by: uuid.UUID | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> LeaveCreditCarryover | None:
    """Carry up to the cap of ``from_year``'s balance into the next year.

    Returns the existing record when already processed, and None when the
    employee is waiting on a first-regularization transfer or has nothing to
    carry. Flushes; the caller commits.
    """
    rules = rules or get_rules()
    clock = clock or get_clock()
    from_year = from_year if from_year is not None else clock.today().year - 1

    existing = await get_carryover(session, employee.id, from_year)
    if existing is not None:
        return existing

    if should_skip_year_end_carryover(employee.hired_date, from_year, rules):
        logger.info("Skipping year-end carryover for user=%s: first regularization pending", employee.id)
        return None

    balance = await get_balance(session, employee, from_year, rules=rules, clock=clock)
    if balance <= 0:
        return None

    carried, forfeited = split_carryover(balance, rules.max_carryover_credits)
    record = LeaveCreditCarryover(
        user_id=employee.id,
        from_year=from_year,
        to_year=from_year + 1,
        credits_from_previous_year=balance,
        carryover_credits=carried,
        forfeited_credits=forfeited,
        processed_by=processed_by,
        notes=f"Year-end carryover: {carried} carried, {forfeited} forfeited",
    )
    session.add(record)
    await session.flush()

    await write_audit_log(
        session,
        user_id=employee.id,
        entity_type=AuditEntityType.CARRYOVER,
        entity_id=record.id,
        action=AuditAction.CARRYOVER,
        actor_id=processed_by,
        after_json=model_to_audit_dict(record),
    )
    return record


async def run_carryover_processing(
    session: AsyncSession,
    from_year: int | None = None,
    processed_by: uuid.UUID | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> CarryoverRunResult:
    """Process year-end carryover for every active employee, committing per user."""
    rules = rules or get_rules()
    clock = clock or get_clock()
    from_year = from_year if from_year is not None else clock.today().year - 1

    result = CarryoverRunResult(from_year=from_year, to_year=from_year + 1)

    for employee in await list_accruing_employees():
        try:
            if await get_carryover(session, employee.id, from_year) is not None:
                result.skipped += 1
                continue

            record = await process_carryover(session, employee, from_year, processed_by, rules=rules, clock=clock)
            if record is None:
                result.skipped += 1
                continue

            await session.commit()
            result.processed += 1
            result.total_carryover += record.carryover_credits
            result.total_forfeited += record.forfeited_credits
        except Exception:
            logger.exception("Carryover failed for user=%s from_year=%d", employee.id, from_year)
            await session.rollback()
            result.errors += 1

    logger.info(
        "Carryover %d->%d: processed=%d skipped=%d errors=%d",
        result.from_year,
        result.to_year,
        result.processed,
        result.skipped,
        result.errors,
    )
    return result


# ---------------------------------------------------------------------------
# First regularization
# ---------------------------------------------------------------------------


async def needs_first_regularization_transfer(
    session: AsyncSession,
    employee: EmployeeInfo,
    to_year: int | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> bool:
    """Hired before ``to_year``, regularized across a year boundary, not yet transferred."""
    rules = rules or get_rules()
    today = (clock or get_clock()).today()
    to_year = to_year if to_year is not None else today.year

    hired = employee.hired_date
    if hired is None or hired.year >= to_year:
        return False
    if not crosses_year_boundary(hired, rules):
        return False
    if not is_regularized(hired, today, rules):
        return False
    return await get_first_regularization(session, employee.id) is None


async def process_first_regularization_transfer(
    session: AsyncSession,
    employee: EmployeeInfo,
    processed_by: uuid.UUID | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> LeaveCreditCarryover | None:
    """Move the whole probation-year balance into the next year, uncapped.

    An ordinary record already written for that transition is upgraded in
    place, and a materialized month-0 row follows the new amount. Returns the
    first-regularization record, or None when no transfer applies.
    """
    rules = rules or get_rules()
    clock = clock or get_clock()

    existing_first = await get_first_regularization(session, employee.id)
    if existing_first is not None:
        return existing_first

    if not await needs_first_regularization_transfer(session, employee, rules=rules, clock=clock):
        return None

    hired = employee.hired_date
    if hired is None:
        return None
    from_year = hired.year
    to_year = from_year + 1
    regularization_date = get_regularization_date(hired, rules)

    credits, months = await _probation_credits(session, employee.id, from_year)
    if credits <= 0:
        logger.info("No probation credits to transfer for user=%s", employee.id)
        return None

    notes = f"First regularization transfer: {credits} credits from {months} probation month(s)"
    record = await get_carryover(session, employee.id, from_year)
    before = None
    if record is not None:
        if record.cash_converted:
            logger.warning(
                "Carryover %d->%d for user=%s was already cash-converted; not upgrading",
                from_year,
                to_year,
                employee.id,
            )
            return None
        before = model_to_audit_dict(record)
        record.credits_from_previous_year = credits
        record.carryover_credits = credits
        record.forfeited_credits = ZERO
        record.is_first_regularization = True
        record.regularization_date = regularization_date
        record.processed_by = processed_by
        record.notes = notes
    else:
        record = LeaveCreditCarryover(
            user_id=employee.id,
            from_year=from_year,
            to_year=to_year,
            credits_from_previous_year=credits,
            carryover_credits=credits,
            forfeited_credits=ZERO,
            is_first_regularization=True,
            regularization_date=regularization_date,
            processed_by=processed_by,
            notes=notes,
        )
    session.add(record)
    await session.flush()

    await resync_carryover_row(session, record, actor_id=processed_by)

    await write_audit_log(
        session,
        user_id=employee.id,
        entity_type=AuditEntityType.CARRYOVER,
        entity_id=record.id,
        action=AuditAction.FIRST_REGULARIZATION,
        actor_id=processed_by,
        before_json=before,
        after_json=model_to_audit_dict(record),
    )
    return record


async def resync_carryover_row(
    session: AsyncSession,
    record: LeaveCreditCarryover,
    *,
    actor_id: uuid.UUID | None,
    action: AuditAction = AuditAction.FIRST_REGULARIZATION,
) -> None:
    """Bring an already materialized month-0 row to the record's amount."""
    result = await session.execute(
        select(LeaveCredit)
        .where(
            col(LeaveCredit.user_id) == record.user_id,
            col(LeaveCredit.year) == record.to_year,
            col(LeaveCredit.month) == CARRYOVER_MONTH,
        )
        .with_for_update()
    )
    entry = result.scalar_one_or_none()
    if entry is None or entry.credits_earned == record.carryover_credits:
        return

    before = model_to_audit_dict(entry)
    entry.credits_earned = record.carryover_credits
    entry.credits_balance = entry.credits_earned - entry.credits_used
    entry.version += 1
    check_entry_invariant(entry)
    session.add(entry)

    await write_audit_log(
        session,
        user_id=record.user_id,
        entity_type=AuditEntityType.LEAVE_CREDIT,
        entity_id=entry.id,
        action=action,
        actor_id=actor_id,
        before_json=before,
        after_json=model_to_audit_dict(entry),
    )


async def get_users_needing_first_regularization(
    session: AsyncSession,
    year: int | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> list[EmployeeInfo]:
    employees = []
    for employee in await list_accruing_employees():
        if await needs_first_regularization_transfer(session, employee, year, rules=rules, clock=clock):
            employees.append(employee)
    return employees


async def run_regularization_processing(
    session: AsyncSession,
    year: int | None = None,
    processed_by: uuid.UUID | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> RegularizationRunResult:
    """Run the first-regularization transfer for everyone who is due, committing per user."""
    rules = rules or get_rules()
    clock = clock or get_clock()
    year = year if year is not None else clock.today().year

    result = RegularizationRunResult(year=year)

    for employee in await get_users_needing_first_regularization(session, year, rules=rules, clock=clock):
        try:
            record = await process_first_regularization_transfer(
                session, employee, processed_by, rules=rules, clock=clock
            )
            if record is None:
                result.skipped += 1
                continue

            await session.commit()
            result.processed += 1
            result.total_transferred += record.carryover_credits
        except Exception:
            logger.exception("First regularization transfer failed for user=%s", employee.id)
            await session.rollback()
            result.errors += 1

    return result


async def get_pending_regularization_credits(
    session: AsyncSession,
    employee: EmployeeInfo,
    *,
    rules: LeaveCreditRules | None = None,
) -> PendingRegularizationResponse:
    """Probation credits that will move on the first-regularization transfer."""
    rules = rules or get_rules()
    regularization_date = get_regularization_date(employee.hired_date, rules)

    if employee.hired_date is None or not crosses_year_boundary(employee.hired_date, rules):
        return PendingRegularizationResponse(
            is_pending=False,
            credits=ZERO,
            months_accrued=0,
            from_year=None,
            to_year=None,
            regularization_date=regularization_date,
        )

    from_year = employee.hired_date.year
    transferred = await get_first_regularization(session, employee.id) is not None
    credits, months = (ZERO, 0) if transferred else await _probation_credits(session, employee.id, from_year)
    return PendingRegularizationResponse(
        is_pending=not transferred,
        credits=credits,
        months_accrued=months,
        from_year=from_year,
        to_year=from_year + 1,
        regularization_date=regularization_date,
    )


async def get_regularization_info(
    session: AsyncSession,
    employee: EmployeeInfo,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> RegularizationInfoResponse:
    rules = rules or get_rules()
    today = (clock or get_clock()).today()
    regularization_date = get_regularization_date(employee.hired_date, rules)

    days_until = None
    if regularization_date is not None:
        days_until = max(0, (regularization_date - today).days)

    return RegularizationInfoResponse(
        user_id=employee.id,
        hired_date=employee.hired_date,
        regularization_date=regularization_date,
        is_regularized=is_regularized(employee.hired_date, today, rules),
        days_until_regularization=days_until,
        has_first_regularization=await get_first_regularization(session, employee.id) is not None,
        pending=await get_pending_regularization_credits(session, employee, rules=rules),
    )


# ---------------------------------------------------------------------------
# Cash conversion
# ---------------------------------------------------------------------------


async def convert_carryover_to_cash(
    session: AsyncSession,
    carryover: LeaveCreditCarryover,
    processed_by: uuid.UUID | None = None,
    *,
    clock: Clock | None = None,
) -> CashConversionResult:
    """Pay out the unused part of an ordinary carryover instead of leaving it as leave.

    A materialized month-0 row keeps what was already used and loses the
    rest. Flushes; the caller commits.
    """
    if carryover.is_first_regularization:
        return CashConversionResult(False, "First regularization carryovers cannot be converted to cash")
    if carryover.cash_converted:
        return CashConversionResult(False, "Carryover has already been cash-converted")
    if carryover.carryover_credits <= 0:
        return CashConversionResult(False, "No carryover credits to convert")

    result = await session.execute(
        select(LeaveCredit)
        .where(
            col(LeaveCredit.user_id) == carryover.user_id,
            col(LeaveCredit.year) == carryover.to_year,
            col(LeaveCredit.month) == CARRYOVER_MONTH,
        )
        .with_for_update()
    )
    entry = result.scalar_one_or_none()

    if entry is not None:
        converted = entry.credits_balance
        before = model_to_audit_dict(entry)
        entry.credits_earned = entry.credits_used
        entry.credits_balance = ZERO
        entry.version += 1
        session.add(entry)
        await write_audit_log(
            session,
            user_id=entry.user_id,
            entity_type=AuditEntityType.LEAVE_CREDIT,
            entity_id=entry.id,
            action=AuditAction.CASH_CONVERT,
            actor_id=processed_by,
            before_json=before,
            after_json=model_to_audit_dict(entry),
        )
    else:
        converted = carryover.carryover_credits

    before = model_to_audit_dict(carryover)
    carryover.cash_converted = True
    carryover.cash_converted_at = (clock or get_clock()).now()
    carryover.processed_by = processed_by
    session.add(carryover)
    await session.flush()

    await write_audit_log(
        session,
        user_id=carryover.user_id,
        entity_type=AuditEntityType.CARRYOVER,
        entity_id=carryover.id,
        action=AuditAction.CASH_CONVERT,
        actor_id=processed_by,
        before_json=before,
        after_json=model_to_audit_dict(carryover),
    )
    return CashConversionResult(True, f"Converted {converted} carryover credits to cash", converted)


async def process_bulk_cash_conversion(
    session: AsyncSession,
    to_year: int | None = None,
    processed_by: uuid.UUID | None = None,
    *,
    clock: Clock | None = None,
) -> BulkCashConversionResult:
    """Convert every unconverted carryover into ``to_year``; ineligible ones count as skipped."""
    clock = clock or get_clock()
    to_year = to_year if to_year is not None else clock.today().year

    ids_result = await session.execute(
        select(LeaveCreditCarryover.id)
        .where(
            col(LeaveCreditCarryover.to_year) == to_year,
            col(LeaveCreditCarryover.cash_converted).is_(False),
        )
        .order_by(col(LeaveCreditCarryover.created_at))
    )
    carryover_ids = list(ids_result.scalars().all())

    result = BulkCashConversionResult(to_year=to_year)
    for carryover_id in carryover_ids:
        try:
            carryover = await session.get(LeaveCreditCarryover, carryover_id)
            if carryover is None:
                result.skipped += 1
                continue

            outcome = await convert_carryover_to_cash(session, carryover, processed_by, clock=clock)
            if not outcome.success:
                result.skipped += 1
                continue

            await session.commit()
            result.processed += 1
            result.total_converted += outcome.credits_converted
        except Exception:
            logger.exception("Cash conversion failed for carryover=%s", carryover_id)
            await session.rollback()
            result.errors += 1

    return result


# ---------------------------------------------------------------------------
# Hire-date edits
# ---------------------------------------------------------------------------


async def validate_hire_date_change(
    session: AsyncSession,
    employee: EmployeeInfo,
    new_hired_date: date,
    *,
    rules: LeaveCreditRules | None = None,
) -> list[str]:
    """Warnings for ledger history that a new hire date would contradict.

    Nothing is recalculated; corrections stay manual.
    """
    rules = rules or get_rules()
    if employee.hired_date == new_hired_date:
        return []

    warnings: list[str] = []
    new_regularization = get_regularization_date(new_hired_date, rules)
    new_crosses = crosses_year_boundary(new_hired_date, rules)

    result = await session.execute(
        select(LeaveCreditCarryover)
        .where(col(LeaveCreditCarryover.user_id) == employee.id)
        .order_by(col(LeaveCreditCarryover.from_year))
    )
    for record in result.scalars().all():
        is_probation_year = new_crosses and record.from_year == new_hired_date.year
        if record.is_first_regularization and not is_probation_year:
            warnings.append(
                f"First regularization transfer {record.from_year}->{record.to_year} does not match the new "
                f"hire date {new_hired_date.isoformat()} (regularization {new_regularization.isoformat()})"
            )
        elif not record.is_first_regularization and is_probation_year:
            warnings.append(
                f"Carryover {record.from_year}->{record.to_year} was capped as a year-end carryover, but the "
                f"new hire date makes it a first regularization transfer"
            )

    credits_result = await session.execute(
        select(LeaveCredit).where(
            col(LeaveCredit.user_id) == employee.id,
            col(LeaveCredit.month) != CARRYOVER_MONTH,
        )
    )
    premature = [
        entry
        for entry in credits_result.scalars().all()
        if (entry.year, entry.month) <= (new_hired_date.year, new_hired_date.month)
    ]
    if premature:
        warnings.append(
            f"{len(premature)} monthly credit(s) were accrued on or before the new hire month "
            f"{new_hired_date:%Y-%m}"
        )

    return warnings
