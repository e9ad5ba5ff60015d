"""Deduction and restoration engine over the per-month credit rows.

Deductions walk the year's buckets oldest first (carryover month 0, then
January onward); restorations walk them newest first, so a deduct followed by
a full restore puts every row back where it was. The walks are planned as pure
functions over ``CreditBucket`` values and then applied to locked rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlmodel import col

from leave_ledger.config import LeaveCreditRules, get_rules
from leave_ledger.exceptions import LedgerInvariantError
from leave_ledger.models.carryover import LeaveCreditCarryover
from leave_ledger.models.enums import AuditAction, AuditEntityType
from leave_ledger.models.ledger import CARRYOVER_MONTH, LeaveCredit
from leave_ledger.services.audit import model_to_audit_dict, write_audit_log
from leave_ledger.services.eligibility import carryover_usable_until, requires_credits

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.models.request import LeaveRequest

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreditBucket:
    """Plain view of one credit row, used for planning."""

    month: int
    earned: Decimal
    used: Decimal

    @property
    def balance(self) -> Decimal:
        return self.earned - self.used

    @classmethod
    def from_entry(cls, entry: LeaveCredit) -> CreditBucket:
        return cls(month=entry.month, earned=entry.credits_earned, used=entry.credits_used)


@dataclass
class LedgerResult:
    """Outcome of a deduction or restoration."""

    success: bool
    message: str
    credits: Decimal = ZERO
    shortfall: Decimal = ZERO
    allocations: list[tuple[int, Decimal]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Pure planners
# ---------------------------------------------------------------------------


def plan_deduction(buckets: Sequence[CreditBucket], amount: Decimal) -> list[tuple[int, Decimal]]:
    """FIFO: take ``min(remaining, balance)`` from each bucket in ascending month order."""
    plan: list[tuple[int, Decimal]] = []
    remaining = amount
    for bucket in sorted(buckets, key=lambda b: b.month):
        if remaining <= 0:
            break
        take = min(remaining, bucket.balance)
        if take > 0:
            plan.append((bucket.month, take))
            remaining -= take
    return plan


def plan_restoration(buckets: Sequence[CreditBucket], amount: Decimal) -> list[tuple[int, Decimal]]:
    """LIFO: give back ``min(remaining, used)`` to each bucket in descending month order."""
    plan: list[tuple[int, Decimal]] = []
    remaining = amount
    for bucket in sorted(buckets, key=lambda b: b.month, reverse=True):
        if remaining <= 0:
            break
        give = min(remaining, bucket.used)
        if give > 0:
            plan.append((bucket.month, give))
            remaining -= give
    return plan


def check_entry_invariant(entry: LeaveCredit) -> None:
    """Raise if a row breaks ``balance == earned - used`` or ``0 <= used <= earned``."""
    if entry.credits_used < 0 or entry.credits_used > entry.credits_earned:
        raise LedgerInvariantError(
            f"Credit row {entry.year}-{entry.month:02d} for user {entry.user_id} has used "
            f"{entry.credits_used} outside [0, {entry.credits_earned}]"
        )
    if entry.credits_balance != entry.credits_earned - entry.credits_used:
        raise LedgerInvariantError(
            f"Credit row {entry.year}-{entry.month:02d} for user {entry.user_id} has balance "
            f"{entry.credits_balance}, expected {entry.credits_earned - entry.credits_used}"
        )


def carryover_is_usable(
    carryover: LeaveCreditCarryover,
    leave_start: date,
    rules: LeaveCreditRules | None = None,
) -> bool:
    """Whether a carryover can fund a leave starting on ``leave_start``."""
    if carryover.cash_converted:
        return False
    if carryover.is_first_regularization:
        return True
    return leave_start <= carryover_usable_until(carryover.from_year, rules or get_rules())


# ---------------------------------------------------------------------------
# Row access
# ---------------------------------------------------------------------------


async def lock_user_credits(session: AsyncSession, user_id: uuid.UUID, year: int) -> list[LeaveCredit]:
    """Load the user's rows for the year with a FOR UPDATE lock, ordered by month."""
    result = await session.execute(
        select(LeaveCredit)
        .where(
            col(LeaveCredit.user_id) == user_id,
            col(LeaveCredit.year) == year,
        )
        .order_by(col(LeaveCredit.month))
        .with_for_update()
    )
    return list(result.scalars().all())


async def get_carryover_into(session: AsyncSession, user_id: uuid.UUID, year: int) -> LeaveCreditCarryover | None:
    """The carryover record whose credits land in ``year``."""
    result = await session.execute(
        select(LeaveCreditCarryover).where(
            col(LeaveCreditCarryover.user_id) == user_id,
            col(LeaveCreditCarryover.to_year) == year,
        )
    )
    return result.scalars().first()


async def materialize_carryover(
    session: AsyncSession,
    carryover: LeaveCreditCarryover,
    *,
    actor_id: uuid.UUID | None = None,
) -> LeaveCredit | None:
    """Create the month-0 row for a carryover if it does not exist yet.

    Returns the existing row unchanged, or None for cash-converted records.
    """
    if carryover.cash_converted:
        return None

    result = await session.execute(
        select(LeaveCredit)
        .where(
            col(LeaveCredit.user_id) == carryover.user_id,
            col(LeaveCredit.year) == carryover.to_year,
            col(LeaveCredit.month) == CARRYOVER_MONTH,
        )
        .with_for_update()
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing

    entry = LeaveCredit(
        user_id=carryover.user_id,
        year=carryover.to_year,
        month=CARRYOVER_MONTH,
        credits_earned=carryover.carryover_credits,
        credits_used=ZERO,
        credits_balance=carryover.carryover_credits,
        accrued_at=carryover.regularization_date or date(carryover.to_year, 1, 1),
    )
    session.add(entry)
    await session.flush()

    await write_audit_log(
        session,
        user_id=carryover.user_id,
        entity_type=AuditEntityType.LEAVE_CREDIT,
        entity_id=entry.id,
        action=AuditAction.MATERIALIZE,
        actor_id=actor_id,
        after_json=model_to_audit_dict(entry),
    )
    return entry


async def _apply_plan(
    session: AsyncSession,
    entries: Sequence[LeaveCredit],
    plan: list[tuple[int, Decimal]],
    *,
    sign: int,
    action: AuditAction,
    actor_id: uuid.UUID | None,
) -> Decimal:
    """Move ``used`` on each planned row by ``sign * amount``; returns the total moved."""
    by_month = {entry.month: entry for entry in entries}
    total = ZERO
    for month, amount in plan:
        entry = by_month[month]
        before = model_to_audit_dict(entry)

        entry.credits_used += sign * amount
        entry.credits_balance = entry.credits_earned - entry.credits_used
        entry.version += 1
        check_entry_invariant(entry)
        session.add(entry)
        total += amount

        await write_audit_log(
            session,
            user_id=entry.user_id,
            entity_type=AuditEntityType.LEAVE_CREDIT,
            entity_id=entry.id,
            action=action,
            actor_id=actor_id,
            before_json=before,
            after_json=model_to_audit_dict(entry),
        )
    return total


# ---------------------------------------------------------------------------
# Engine operations
# ---------------------------------------------------------------------------


async def deduct_credits(
    session: AsyncSession,
    leave_request: LeaveRequest,
    year: int | None = None,
    *,
    actor_id: uuid.UUID | None = None,
    rules: LeaveCreditRules | None = None,
) -> LedgerResult:
    """Deduct the request's days from the user's ``year`` buckets, oldest first.

    ``year`` defaults to the leave's start year. Only credit-consuming leave
    types touch the ledger. With nothing available the request is stamped
    with zero deducted and no row changes. Partial coverage deducts what is
    there. Flushes, never commits.
    """
    rules = rules or get_rules()
    year = year if year is not None else leave_request.start_date.year

    if not requires_credits(leave_request.leave_type, rules):
        return LedgerResult(success=True, message=f"{leave_request.leave_type} does not use leave credits")

    carryover = await get_carryover_into(session, leave_request.user_id, year)
    carryover_usable = carryover is not None and carryover_is_usable(carryover, leave_request.start_date, rules)
    if carryover is not None and carryover_usable:
        await materialize_carryover(session, carryover, actor_id=actor_id)

    entries = await lock_user_credits(session, leave_request.user_id, year)
    if not carryover_usable:
        entries = [e for e in entries if e.month != CARRYOVER_MONTH]

    buckets = [CreditBucket.from_entry(e) for e in entries]
    available = sum((b.balance for b in buckets), ZERO)
    requested = leave_request.days_requested

    if available <= 0:
        leave_request.credits_deducted = ZERO
        leave_request.credits_year = year
        session.add(leave_request)
        await session.flush()
        logger.info("No credits available for user=%s year=%d", leave_request.user_id, year)
        return LedgerResult(
            success=False,
            message=f"No leave credits available for {year}",
            shortfall=requested,
        )

    plan = plan_deduction(buckets, requested)
    deducted = await _apply_plan(session, entries, plan, sign=1, action=AuditAction.DEDUCT, actor_id=actor_id)

    leave_request.credits_deducted = deducted
    leave_request.credits_year = year
    session.add(leave_request)
    await session.flush()

    shortfall = requested - deducted
    if shortfall > 0:
        logger.warning(
            "Partial deduction for user=%s: %s of %s days covered",
            leave_request.user_id,
            deducted,
            requested,
        )
        message = f"Deducted {deducted} of {requested} days; {shortfall} not covered by credits"
    else:
        message = f"Deducted {deducted} credits"

    return LedgerResult(success=True, message=message, credits=deducted, shortfall=shortfall, allocations=plan)


async def _restore(
    session: AsyncSession,
    leave_request: LeaveRequest,
    year: int,
    amount: Decimal,
    *,
    actor_id: uuid.UUID | None,
) -> tuple[Decimal, list[tuple[int, Decimal]]]:
    entries = await lock_user_credits(session, leave_request.user_id, year)
    plan = plan_restoration([CreditBucket.from_entry(e) for e in entries], amount)
    restored = await _apply_plan(session, entries, plan, sign=-1, action=AuditAction.RESTORE, actor_id=actor_id)

    to_carryover = sum((amount for month, amount in plan if month == CARRYOVER_MONTH), ZERO)
    if to_carryover > 0:
        carryover = await get_carryover_into(session, leave_request.user_id, year)
        if carryover is not None and carryover.cash_converted:
            # Neither balances nor deductions read a converted month-0 row again.
            logger.warning(
                "Restored %s credits for request=%s onto cash-converted carryover %d->%d; not spendable",
                to_carryover,
                leave_request.id,
                carryover.from_year,
                carryover.to_year,
            )

    leave_request.credits_deducted = (leave_request.credits_deducted or ZERO) - restored
    session.add(leave_request)
    await session.flush()

    if restored < amount:
        logger.warning(
            "Restored %s of %s credits for request=%s; ledger rows held less usage than recorded",
            restored,
            amount,
            leave_request.id,
        )
    return restored, plan


async def restore_credits(
    session: AsyncSession,
    leave_request: LeaveRequest,
    *,
    actor_id: uuid.UUID | None = None,
) -> LedgerResult:
    """Give back everything the request deducted, newest month first."""
    deducted = leave_request.credits_deducted or ZERO
    if deducted <= 0 or leave_request.credits_year is None:
        return LedgerResult(success=True, message="No credits to restore")

    restored, plan = await _restore(session, leave_request, leave_request.credits_year, deducted, actor_id=actor_id)
    return LedgerResult(success=True, message=f"Restored {restored} credits", credits=restored, allocations=plan)


async def restore_partial_credits(
    session: AsyncSession,
    leave_request: LeaveRequest,
    days: Decimal,
    reason: str = "",
    *,
    actor_id: uuid.UUID | None = None,
) -> LedgerResult:
    """Give back up to ``days`` of the request's deduction, e.g. when a leave is shortened."""
    deducted = leave_request.credits_deducted or ZERO
    if days <= 0 or deducted <= 0 or leave_request.credits_year is None:
        return LedgerResult(success=True, message="No credits to restore")

    amount = min(days, deducted)
    restored, plan = await _restore(session, leave_request, leave_request.credits_year, amount, actor_id=actor_id)
    logger.info(
        "Partially restored %s credits for request=%s (%s)",
        restored,
        leave_request.id,
        reason or "no reason given",
    )
    return LedgerResult(success=True, message=f"Restored {restored} credits", credits=restored, allocations=plan)
