"""Consistency audit over the credit ledger and carryover history, with repairs.

``audit_leave_credits`` only reads. ``fix_ledger_issues`` re-runs the audit
and repairs the carryover problems that have a mechanical answer; everything
else is left for a person to review.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlmodel import col

from leave_ledger.clock import get_clock
from leave_ledger.config import LeaveCreditRules, get_rules
from leave_ledger.models.carryover import LeaveCreditCarryover
from leave_ledger.models.enums import AuditAction, AuditEntityType, LeaveRequestStatus
from leave_ledger.models.ledger import CARRYOVER_MONTH, LeaveCredit
from leave_ledger.models.request import LeaveRequest
from leave_ledger.services.accrual import compute_accrual_date
from leave_ledger.services.audit import model_to_audit_dict, write_audit_log
from leave_ledger.services.balance import get_credit_entries
from leave_ledger.services.carryover import crosses_year_boundary, resync_carryover_row
from leave_ledger.services.employee import get_employee_service

if TYPE_CHECKING:
    import uuid
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.clock import Clock
    from leave_ledger.services.employee import EmployeeInfo

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class LedgerIssue:
    type: str
    user_id: str
    details: str
    carryover_id: uuid.UUID | None = None


@dataclass
class LedgerAuditReport:
    year: int
    users_checked: int = 0
    issues: list[LedgerIssue] = field(default_factory=list)


@dataclass
class LedgerFixResult:
    """Outcome of a repair run; ``actions`` lists what was changed."""

    year: int
    fixed: int = 0
    unfixed: int = 0
    errors: int = 0
    actions: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


async def get_approved_deductions(session: AsyncSession, user_id: uuid.UUID, year: int) -> Decimal | None:
    """Sum of ``credits_deducted`` on approved requests charged to ``year``; None when there are none."""
    result = await session.execute(
        select(LeaveRequest.credits_deducted).where(
            col(LeaveRequest.user_id) == user_id,
            col(LeaveRequest.status) == LeaveRequestStatus.APPROVED.value,
            col(LeaveRequest.credits_year) == year,
            col(LeaveRequest.credits_deducted) > 0,
        )
    )
    amounts = list(result.scalars().all())
    if not amounts:
        return None
    return sum(amounts, ZERO)


async def _audit_employee(
    session: AsyncSession,
    employee: EmployeeInfo,
    year: int,
    report: LedgerAuditReport,
    rules: LeaveCreditRules,
    clock: Clock,
) -> None:
    today = clock.today()
    uid = str(employee.id)

    def flag(issue_type: str, details: str, carryover_id: uuid.UUID | None = None) -> None:
        report.issues.append(LedgerIssue(type=issue_type, user_id=uid, details=details, carryover_id=carryover_id))

    entries = await get_credit_entries(session, employee.id, year)

    if not employee.is_active:
        if any(e.credits_balance > 0 for e in entries):
            flag("inactive_with_credits", f"Inactive employee still holds credits in {year}")
        return

    for entry in entries:
        if entry.credits_balance != entry.credits_earned - entry.credits_used:
            flag(
                "balance_mismatch",
                f"{year}-{entry.month:02d}: balance {entry.credits_balance} != "
                f"{entry.credits_earned} - {entry.credits_used}",
            )
        if entry.credits_used < 0 or entry.credits_used > entry.credits_earned or entry.credits_balance < 0:
            flag("negative_balance", f"{year}-{entry.month:02d}: used {entry.credits_used} of {entry.credits_earned}")

    # Every approved deduction must be backed by usage on the rows it was charged to.
    deducted = await get_approved_deductions(session, employee.id, year)
    if deducted is not None:
        used = sum((e.credits_used for e in entries), ZERO)
        if used != deducted:
            flag(
                "deducted_used_mismatch",
                f"Approved requests deducted {deducted} from {year} but the ledger shows {used} used",
            )

    posted = {e.month for e in entries if e.month != CARRYOVER_MONTH}
    missing = []
    for month in range(1, 13):
        due = compute_accrual_date(employee.hired_date, year, month, rules)
        if month not in posted and due is not None and due <= today:
            missing.append(month)
    if missing:
        flag("missing_credits", f"No accrual for month(s) {', '.join(str(m) for m in missing)} of {year}")

    result = await session.execute(
        select(LeaveCreditCarryover).where(col(LeaveCreditCarryover.user_id) == employee.id)
    )
    carryovers = list(result.scalars().all())

    for record in carryovers:
        if not record.is_first_regularization and record.carryover_credits > rules.max_carryover_credits:
            flag(
                "carryover_cap_exceeded",
                f"{record.from_year}->{record.to_year} carried {record.carryover_credits} "
                f"(cap {rules.max_carryover_credits})",
                record.id,
            )
        if record.is_first_regularization and not crosses_year_boundary(employee.hired_date, rules):
            flag(
                "invalid_first_regularization",
                f"{record.from_year}->{record.to_year} flagged as first regularization but hire and "
                f"regularization fall in the same year",
                record.id,
            )

    has_first = any(r.is_first_regularization for r in carryovers)
    if employee.hired_date is not None and crosses_year_boundary(employee.hired_date, rules) and not has_first:
        hire_year = employee.hired_date.year
        ordinary = next((r for r in carryovers if r.from_year == hire_year), None)
        if ordinary is not None:
            flag(
                "pending_transfer_with_carryover",
                f"Ordinary carryover from {hire_year} exists while the first regularization "
                f"transfer is still pending",
                ordinary.id,
            )


async def audit_leave_credits(
    session: AsyncSession,
    year: int | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> LedgerAuditReport:
    """Check every employee's rows and carryovers for ``year`` and report what looks wrong."""
    rules = rules or get_rules()
    clock = clock or get_clock()
    year = year if year is not None else clock.today().year

    report = LedgerAuditReport(year=year)
    for employee in await get_employee_service().list_employees():
        report.users_checked += 1
        await _audit_employee(session, employee, year, report, rules, clock)

    logger.info("Ledger audit for %d: %d users, %d issues", year, report.users_checked, len(report.issues))
    return report


# ---------------------------------------------------------------------------
# Repairs
# ---------------------------------------------------------------------------


async def _load_carryover(session: AsyncSession, carryover_id: uuid.UUID) -> LeaveCreditCarryover | None:
    result = await session.execute(select(LeaveCreditCarryover).where(col(LeaveCreditCarryover.id) == carryover_id))
    return result.scalar_one_or_none()


async def _drop_pending_carryover(
    session: AsyncSession,
    carryover_id: uuid.UUID,
    processed_by: uuid.UUID | None,
    rules: LeaveCreditRules,
) -> str | None:
    """Delete an ordinary carryover written before the first regularization transfer.

    The regularization job then moves the full probation balance. Left alone
    when converted to cash or when its month-0 row has already been spent.
    """
    record = await _load_carryover(session, carryover_id)
    if record is None or record.is_first_regularization or record.cash_converted:
        return None

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
    if entry is not None and entry.credits_used > 0:
        logger.warning(
            "Carryover %d->%d for user=%s already has %s used; needs manual review",
            record.from_year,
            record.to_year,
            record.user_id,
            entry.credits_used,
        )
        return None

    if entry is not None:
        await write_audit_log(
            session,
            user_id=record.user_id,
            entity_type=AuditEntityType.LEAVE_CREDIT,
            entity_id=entry.id,
            action=AuditAction.RECONCILE,
            actor_id=processed_by,
            before_json=model_to_audit_dict(entry),
        )
        await session.delete(entry)

    await write_audit_log(
        session,
        user_id=record.user_id,
        entity_type=AuditEntityType.CARRYOVER,
        entity_id=record.id,
        action=AuditAction.RECONCILE,
        actor_id=processed_by,
        before_json=model_to_audit_dict(record),
    )
    await session.delete(record)
    await session.flush()
    return f"Deleted ordinary carryover {record.from_year}->{record.to_year} for user {record.user_id}"


async def _cap_carryover(
    session: AsyncSession,
    carryover_id: uuid.UUID,
    processed_by: uuid.UUID | None,
    rules: LeaveCreditRules,
) -> str | None:
    """Bring an ordinary carryover back to the cap, forfeiting the excess."""
    record = await _load_carryover(session, carryover_id)
    cap = rules.max_carryover_credits
    if record is None or record.is_first_regularization or record.carryover_credits <= cap:
        return None

    before = model_to_audit_dict(record)
    old = record.carryover_credits
    record.carryover_credits = cap
    record.forfeited_credits += old - cap
    session.add(record)

    await write_audit_log(
        session,
        user_id=record.user_id,
        entity_type=AuditEntityType.CARRYOVER,
        entity_id=record.id,
        action=AuditAction.RECONCILE,
        actor_id=processed_by,
        before_json=before,
        after_json=model_to_audit_dict(record),
    )
    await resync_carryover_row(session, record, actor_id=processed_by, action=AuditAction.RECONCILE)
    await session.flush()
    return f"Capped carryover {record.from_year}->{record.to_year} for user {record.user_id}: {old} -> {cap}"


async def _clear_first_regularization(
    session: AsyncSession,
    carryover_id: uuid.UUID,
    processed_by: uuid.UUID | None,
    rules: LeaveCreditRules,
) -> str | None:
    record = await _load_carryover(session, carryover_id)
    if record is None or not record.is_first_regularization:
        return None

    before = model_to_audit_dict(record)
    record.is_first_regularization = False
    record.regularization_date = None
    session.add(record)

    await write_audit_log(
        session,
        user_id=record.user_id,
        entity_type=AuditEntityType.CARRYOVER,
        entity_id=record.id,
        action=AuditAction.RECONCILE,
        actor_id=processed_by,
        before_json=before,
        after_json=model_to_audit_dict(record),
    )
    await session.flush()
    return f"Cleared first regularization flag on {record.from_year}->{record.to_year} for user {record.user_id}"


_FIXERS: dict[
    str,
    Callable[[AsyncSession, uuid.UUID, uuid.UUID | None, LeaveCreditRules], Awaitable[str | None]],
] = {
    "pending_transfer_with_carryover": _drop_pending_carryover,
    "carryover_cap_exceeded": _cap_carryover,
    "invalid_first_regularization": _clear_first_regularization,
}


async def fix_ledger_issues(
    session: AsyncSession,
    year: int | None = None,
    processed_by: uuid.UUID | None = None,
    *,
    rules: LeaveCreditRules | None = None,
    clock: Clock | None = None,
) -> LedgerFixResult:
    """Audit ``year`` and repair the carryover issues found, committing per issue.

    Issues without a mechanical repair are counted as unfixed.
    """
    rules = rules or get_rules()
    report = await audit_leave_credits(session, year, rules=rules, clock=clock)
    result = LedgerFixResult(year=report.year)

    for issue in report.issues:
        fixer = _FIXERS.get(issue.type)
        if fixer is None or issue.carryover_id is None:
            result.unfixed += 1
            continue
        try:
            action = await fixer(session, issue.carryover_id, processed_by, rules)
            if action is None:
                result.unfixed += 1
                continue
            await session.commit()
            result.fixed += 1
            result.actions.append(action)
            logger.info("Ledger fix: %s", action)
        except Exception:
            logger.exception("Ledger fix failed for %s user=%s", issue.type, issue.user_id)
            await session.rollback()
            result.errors += 1

    logger.info(
        "Ledger fix for %d: fixed=%d unfixed=%d errors=%d",
        result.year,
        result.fixed,
        result.unfixed,
        result.errors,
    )
    return result
