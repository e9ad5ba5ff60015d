from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.exc import IntegrityError

from leave_ledger.models import (
    CARRYOVER_MONTH,
    Attendance,
    AuditLog,
    LeaveCredit,
    LeaveCreditCarryover,
    LeaveRequest,
    LeaveRequestStatus,
    LeaveType,
    SQLModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

EXPECTED_TABLES = {
    "attendance",
    "audit_log",
    "leave_credit",
    "leave_credit_carryover",
    "leave_request",
}


def test_all_tables_registered() -> None:
    table_names = set(SQLModel.metadata.tables.keys())
    assert EXPECTED_TABLES.issubset(table_names)


def test_leave_credit_defaults() -> None:
    entry = LeaveCredit(user_id=uuid.uuid4(), year=2026, month=1)
    assert entry.id is not None
    assert entry.credits_earned == Decimal("0")
    assert entry.credits_used == Decimal("0")
    assert entry.credits_balance == Decimal("0")
    assert entry.version == 1
    assert entry.is_carryover is False


def test_carryover_month_flag() -> None:
    entry = LeaveCredit(user_id=uuid.uuid4(), year=2026, month=CARRYOVER_MONTH)
    assert entry.is_carryover is True


def test_carryover_defaults() -> None:
    record = LeaveCreditCarryover(user_id=uuid.uuid4(), from_year=2025, to_year=2026)
    assert record.is_first_regularization is False
    assert record.cash_converted is False
    assert record.cash_converted_at is None
    assert record.regularization_date is None


def test_leave_request_defaults() -> None:
    request = LeaveRequest(
        user_id=uuid.uuid4(),
        leave_type=LeaveType.VACATION,
        start_date=date(2026, 3, 16),
        end_date=date(2026, 3, 17),
        days_requested=Decimal("2"),
    )
    assert request.status == LeaveRequestStatus.PENDING
    assert request.credits_deducted is None
    assert request.credits_year is None
    assert request.medical_cert_submitted is False


def test_attendance_instantiation() -> None:
    row = Attendance(user_id=uuid.uuid4(), shift_date=date(2026, 3, 2), status="ncns")
    assert row.tardy_minutes == 0
    assert row.undertime_minutes == 0


def test_audit_log_instantiation() -> None:
    log = AuditLog(
        user_id=uuid.uuid4(),
        actor_id=uuid.uuid4(),
        entity_type="LEAVE_CREDIT",
        entity_id=uuid.uuid4(),
        action="ACCRUE",
        after_json={"credits_earned": "1.25"},
    )
    assert log.before_json is None
    assert log.created_at is not None


async def test_one_row_per_user_month(db_session: AsyncSession) -> None:
    user_id = uuid.uuid4()
    db_session.add(LeaveCredit(user_id=user_id, year=2026, month=1))
    await db_session.commit()

    db_session.add(LeaveCredit(user_id=user_id, year=2026, month=1))
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()


async def test_month_range_checked(db_session: AsyncSession) -> None:
    db_session.add(LeaveCredit(user_id=uuid.uuid4(), year=2026, month=13))
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()


async def test_one_carryover_per_source_year(db_session: AsyncSession) -> None:
    user_id = uuid.uuid4()
    db_session.add(LeaveCreditCarryover(user_id=user_id, from_year=2025, to_year=2026))
    await db_session.commit()

    db_session.add(LeaveCreditCarryover(user_id=user_id, from_year=2025, to_year=2026))
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()
