"""Tests for year-end carryover, the first-regularization transfer, cash
conversion and hire-date edit warnings.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select
from sqlmodel import col

from leave_ledger.clock import FixedClock
from leave_ledger.exceptions import LedgerInvariantError
from leave_ledger.models.audit import AuditLog
from leave_ledger.models.carryover import LeaveCreditCarryover
from leave_ledger.models.ledger import CARRYOVER_MONTH
from leave_ledger.services import carryover as carryover_service
from leave_ledger.services.balance import get_credit_entries
from leave_ledger.services.carryover import (
    convert_carryover_to_cash,
    get_pending_regularization_credits,
    get_regularization_info,
    needs_first_regularization_transfer,
    process_bulk_cash_conversion,
    process_carryover,
    process_first_regularization_transfer,
    run_carryover_processing,
    run_regularization_processing,
    should_skip_year_end_carryover,
    split_carryover,
    validate_hire_date_change,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from httpx import AsyncClient
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.services.employee import EmployeeInfo

# Hired mid-2025: probation runs into 2026, five months accrue in 2025.
PROBATION_HIRE = date(2025, 7, 11)
PROBATION_MONTHS = {8: "1.25", 9: "1.25", 10: "1.25", 11: "1.25", 12: "1.25"}


def _admin(user_id: uuid.UUID | None = None) -> dict[str, str]:
    return {"X-User-Id": str(user_id or uuid.uuid4()), "X-Role": "admin"}


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_split_over_cap(self) -> None:
        assert split_carryover(Decimal("7"), Decimal("4")) == (Decimal("4"), Decimal("3"))

    def test_split_under_cap(self) -> None:
        assert split_carryover(Decimal("2.5"), Decimal("4")) == (Decimal("2.5"), Decimal("0"))

    def test_skip_when_regularizing_next_year(self) -> None:
        assert should_skip_year_end_carryover(PROBATION_HIRE, 2025) is True

    def test_no_skip_when_regularized_same_year(self) -> None:
        assert should_skip_year_end_carryover(date(2025, 3, 1), 2025) is False

    def test_no_skip_for_earlier_hires(self) -> None:
        assert should_skip_year_end_carryover(date(2024, 7, 11), 2025) is False
        assert should_skip_year_end_carryover(None, 2025) is False


# ---------------------------------------------------------------------------
# Year-end carryover
# ---------------------------------------------------------------------------


class TestProcessCarryover:
    async def test_caps_at_four(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
    ) -> None:
        employee = make_employee(date(2024, 1, 15))
        await seed_credits(employee.id, 2025, {1: "5", 2: "2"})
        clock.set(date(2026, 1, 1))

        record = await process_carryover(db_session, employee, 2025)
        await db_session.commit()

        assert record is not None
        assert record.to_year == 2026
        assert record.credits_from_previous_year == Decimal("7")
        assert record.carryover_credits == Decimal("4")
        assert record.forfeited_credits == Decimal("3")
        assert record.is_first_regularization is False

    async def test_idempotent(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
    ) -> None:
        employee = make_employee(date(2024, 1, 15))
        await seed_credits(employee.id, 2025, {1: "2"})
        clock.set(date(2026, 1, 1))

        first = await process_carryover(db_session, employee, 2025)
        await db_session.commit()
        second = await process_carryover(db_session, employee, 2025)

        assert first is not None
        assert second is not None
        assert first.id == second.id

    async def test_skips_probation_hire(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
    ) -> None:
        employee = make_employee(PROBATION_HIRE)
        await seed_credits(employee.id, 2025, PROBATION_MONTHS)
        clock.set(date(2026, 1, 1))

        assert await process_carryover(db_session, employee, 2025) is None

    async def test_nothing_to_carry(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
    ) -> None:
        employee = make_employee(date(2024, 1, 15))
        await seed_credits(employee.id, 2025, {1: ("1.25", "1.25")})
        clock.set(date(2026, 1, 1))

        assert await process_carryover(db_session, employee, 2025) is None

    async def test_run_counts(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
        seed_carryover,
    ) -> None:
        carrying = make_employee(date(2024, 1, 15))
        probation = make_employee(PROBATION_HIRE)
        make_employee(date(2023, 5, 2))  # nothing left to carry
        done = make_employee(date(2022, 2, 1))
        await seed_credits(carrying.id, 2025, {1: "6"})
        await seed_credits(probation.id, 2025, PROBATION_MONTHS)
        await seed_carryover(done.id, 2025, "3")
        clock.set(date(2026, 1, 1))

        result = await run_carryover_processing(db_session)

        assert result.from_year == 2025
        assert result.to_year == 2026
        assert result.processed == 1
        assert result.skipped == 3
        assert result.errors == 0
        assert result.total_carryover == Decimal("4")
        assert result.total_forfeited == Decimal("2")

    async def test_failure_for_one_user_keeps_the_others(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        first = make_employee(date(2024, 1, 15))
        broken = make_employee(date(2024, 2, 10))
        last = make_employee(date(2024, 3, 5))
        for hired in (first, broken, last):
            await seed_credits(hired.id, 2025, {1: "3"})
        clock.set(date(2026, 1, 1))
        real_process = carryover_service.process_carryover

        async def _fail_for_one(
            session: AsyncSession, employee: EmployeeInfo, *args: object, **kwargs: object
        ) -> LeaveCreditCarryover | None:
            if employee.id == broken.id:
                raise RuntimeError("row lock timeout")
            return await real_process(session, employee, *args, **kwargs)

        monkeypatch.setattr(carryover_service, "process_carryover", _fail_for_one)

        result = await run_carryover_processing(db_session)

        assert result.processed == 2
        assert result.errors == 1
        assert result.total_carryover == Decimal("6")
        assert await carryover_service.get_carryover(db_session, first.id, 2025) is not None
        assert await carryover_service.get_carryover(db_session, broken.id, 2025) is None
        assert await carryover_service.get_carryover(db_session, last.id, 2025) is not None


# ---------------------------------------------------------------------------
# First regularization
# ---------------------------------------------------------------------------


class TestFirstRegularization:
    async def test_not_needed_before_regularization(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
    ) -> None:
        employee = make_employee(PROBATION_HIRE)
        await seed_credits(employee.id, 2025, PROBATION_MONTHS)
        clock.set(date(2026, 1, 10))

        assert await needs_first_regularization_transfer(db_session, employee) is False
        assert await process_first_regularization_transfer(db_session, employee) is None

    async def test_not_needed_when_regularized_same_year(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
    ) -> None:
        employee = make_employee(date(2025, 3, 1))
        clock.set(date(2026, 1, 11))

        assert await needs_first_regularization_transfer(db_session, employee) is False

    async def test_transfers_full_probation_balance(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
    ) -> None:
        employee = make_employee(PROBATION_HIRE)
        await seed_credits(employee.id, 2025, PROBATION_MONTHS)
        clock.set(date(2026, 1, 11))

        assert await needs_first_regularization_transfer(db_session, employee) is True
        record = await process_first_regularization_transfer(db_session, employee)
        await db_session.commit()

        assert record is not None
        assert record.is_first_regularization is True
        assert record.from_year == 2025
        assert record.to_year == 2026
        # Uncapped: more than the four-credit year-end limit.
        assert record.carryover_credits == Decimal("6.25")
        assert record.forfeited_credits == Decimal("0")
        assert record.regularization_date == date(2026, 1, 11)
        assert await needs_first_regularization_transfer(db_session, employee) is False

    async def test_idempotent(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
    ) -> None:
        employee = make_employee(PROBATION_HIRE)
        await seed_credits(employee.id, 2025, PROBATION_MONTHS)
        clock.set(date(2026, 1, 11))

        first = await process_first_regularization_transfer(db_session, employee)
        await db_session.commit()
        second = await process_first_regularization_transfer(db_session, employee)

        assert first is not None
        assert second is not None
        assert first.id == second.id

    async def test_upgrades_ordinary_record_in_place(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
        seed_carryover,
    ) -> None:
        employee = make_employee(PROBATION_HIRE)
        await seed_credits(employee.id, 2025, PROBATION_MONTHS)
        ordinary = await seed_carryover(employee.id, 2025, "4")
        await seed_credits(employee.id, 2026, {CARRYOVER_MONTH: ("4", "1")})
        clock.set(date(2026, 1, 12))

        record = await process_first_regularization_transfer(db_session, employee)
        await db_session.commit()

        assert record is not None
        assert record.id == ordinary.id
        assert record.is_first_regularization is True
        assert record.carryover_credits == Decimal("6.25")

        rows = {e.month: e for e in await get_credit_entries(db_session, employee.id, 2026)}
        assert rows[CARRYOVER_MONTH].credits_earned == Decimal("6.25")
        assert rows[CARRYOVER_MONTH].credits_used == Decimal("1")
        assert rows[CARRYOVER_MONTH].credits_balance == Decimal("5.25")

        result = await db_session.execute(
            select(AuditLog).where(
                col(AuditLog.entity_id) == ordinary.id,
                col(AuditLog.action) == "FIRST_REGULARIZATION",
            )
        )
        log = result.scalars().one()
        assert log.before_json is not None
        assert log.before_json["carryover_credits"] == "4"

    async def test_resync_below_used_fails_hard(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
        seed_carryover,
    ) -> None:
        employee = make_employee(PROBATION_HIRE)
        await seed_credits(employee.id, 2025, {8: "1.25", 9: "1.25"})
        await seed_carryover(employee.id, 2025, "4")
        await seed_credits(employee.id, 2026, {CARRYOVER_MONTH: ("4", "3")})
        clock.set(date(2026, 1, 12))

        # The 2.50 probation balance cannot cover the 3 already used from month 0.
        with pytest.raises(LedgerInvariantError):
            await process_first_regularization_transfer(db_session, employee)
        await db_session.rollback()

    async def test_cash_converted_record_not_upgraded(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
        seed_carryover,
    ) -> None:
        employee = make_employee(PROBATION_HIRE)
        await seed_credits(employee.id, 2025, PROBATION_MONTHS)
        await seed_carryover(employee.id, 2025, "4", cash_converted=True)
        clock.set(date(2026, 1, 12))

        assert await process_first_regularization_transfer(db_session, employee) is None

    async def test_run_regularization(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
    ) -> None:
        due = make_employee(PROBATION_HIRE)
        make_employee(date(2025, 9, 1))  # regularizes in March
        make_employee(date(2020, 1, 1))
        await seed_credits(due.id, 2025, PROBATION_MONTHS)
        clock.set(date(2026, 1, 15))

        result = await run_regularization_processing(db_session, 2026)

        assert result.processed == 1
        assert result.errors == 0
        assert result.total_transferred == Decimal("6.25")

    async def test_pending_credits_and_info(
        self,
        db_session: AsyncSession,
        clock: FixedClock,
        make_employee: Callable[..., EmployeeInfo],
        seed_credits,
    ) -> None:
        employee = make_employee(PROBATION_HIRE)
        await seed_credits(employee.id, 2025, PROBATION_MONTHS)
        clock.set(date(2025, 12, 15))

        pending = await get_pending_regularization_credits(db_session, employee)
        assert pending.is_pending is True
        assert pending.credits == Decimal("6.25")
        assert pending.months_accrued == 5
        assert pending.from_year == 2025
        assert pending.to_year == 2026

        info = await get_regularization_info(db_session, employee)
        assert info.regularization_date == date(2026, 1, 11)
        assert info.is_regularized is False
        assert info.days_until_regularization == 27
        assert info.has_first_regularization is False

    async def test_nothing_pending_when_regularized_same_year(
        self,
        db_session: AsyncSession,
        make_employee: Callable[..., EmployeeInfo],
    ) -> None:
        employee = make_employee(date(2025, 3, 1))
        pending = await get_pending_regularization_credits(db_session, employee)
        assert pending.is_pending is False
        assert pending.credits == Decimal("0")


# ---------------------------------------------------------------------------
# Cash conversion
# ---------------------------------------------------------------------------


class TestCashConversion:
    async def test_rejects_first_regularization(self, db_session: AsyncSession, seed_carryover) -> None:
        record = await seed_carryover(uuid.uuid4(), 2025, "6.25", is_first_regularization=True)
        result = await convert_carryover_to_cash(db_session, record)
        assert result.success is False
        assert result.message == "First regularization carryovers cannot be converted to cash"

    async def test_rejects_already_converted(self, db_session: AsyncSession, seed_carryover) -> None:
        record = await seed_carryover(uuid.uuid4(), 2025, "4", cash_converted=True)
        result = await convert_carryover_to_cash(db_session, record)
        assert result.success is False
        assert result.message == "Carryover has already been cash-converted"

    async def test_rejects_empty(self, db_session: AsyncSession, seed_carryover) -> None:
        record = await seed_carryover(uuid.uuid4(), 2025, "0")
        result = await convert_carryover_to_cash(db_session, record)
        assert result.success is False
        assert result.message == "No carryover credits to convert"

    async def test_converts_unmaterialized(
        self, db_session: AsyncSession, clock: FixedClock, seed_carryover
    ) -> None:
        record = await seed_carryover(uuid.uuid4(), 2025, "4")

        result = await convert_carryover_to_cash(db_session, record)
        await db_session.commit()

        assert result.success is True
        assert result.credits_converted == Decimal("4")
        assert result.message == "Converted 4 carryover credits to cash"
        assert record.cash_converted is True
        assert record.cash_converted_at == clock.now()

    async def test_keeps_used_part_of_materialized_row(
        self, db_session: AsyncSession, seed_carryover, seed_credits
    ) -> None:
        user_id = uuid.uuid4()
        record = await seed_carryover(user_id, 2025, "4")
        await seed_credits(user_id, 2026, {CARRYOVER_MONTH: ("4", "1")})

        result = await convert_carryover_to_cash(db_session, record)
        await db_session.commit()

        assert result.credits_converted == Decimal("3")
        row = (await get_credit_entries(db_session, user_id, 2026))[0]
        assert row.credits_earned == Decimal("1")
        assert row.credits_used == Decimal("1")
        assert row.credits_balance == Decimal("0")

    async def test_bulk(self, db_session: AsyncSession, seed_carryover) -> None:
        await seed_carryover(uuid.uuid4(), 2025, "4")
        await seed_carryover(uuid.uuid4(), 2025, "2.5")
        await seed_carryover(uuid.uuid4(), 2025, "6.25", is_first_regularization=True)
        await seed_carryover(uuid.uuid4(), 2025, "3", cash_converted=True)

        result = await process_bulk_cash_conversion(db_session, 2026)

        assert result.to_year == 2026
        assert result.processed == 2
        assert result.skipped == 1
        assert result.errors == 0
        assert result.total_converted == Decimal("6.5")

        remaining = await db_session.execute(
            select(LeaveCreditCarryover).where(col(LeaveCreditCarryover.cash_converted).is_(False))
        )
        assert [r.is_first_regularization for r in remaining.scalars().all()] == [True]

    async def test_endpoint(
        self,
        async_client: AsyncClient,
        make_employee: Callable[..., EmployeeInfo],
        seed_carryover,
    ) -> None:
        employee = make_employee()
        await seed_carryover(employee.id, 2025, "3")

        resp = await async_client.post(
            f"/users/{employee.id}/credits/cash-conversion",
            json={"to_year": 2026},
            headers=_admin(),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert Decimal(data["credits_converted"]) == Decimal("3")

    async def test_endpoint_without_carryover(
        self,
        async_client: AsyncClient,
        make_employee: Callable[..., EmployeeInfo],
    ) -> None:
        employee = make_employee()
        resp = await async_client.post(
            f"/users/{employee.id}/credits/cash-conversion",
            json={"to_year": 2026},
            headers=_admin(),
        )
        assert resp.status_code == 404

    async def test_endpoint_requires_admin(
        self,
        async_client: AsyncClient,
        make_employee: Callable[..., EmployeeInfo],
    ) -> None:
        employee = make_employee()
        resp = await async_client.post(
            f"/users/{employee.id}/credits/cash-conversion",
            headers={"X-User-Id": str(employee.id), "X-Role": "employee"},
        )
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Hire-date edits
# ---------------------------------------------------------------------------


class TestHireDateChange:
    async def test_unchanged(self, db_session: AsyncSession, make_employee) -> None:
        employee = make_employee(PROBATION_HIRE)
        assert await validate_hire_date_change(db_session, employee, PROBATION_HIRE) == []

    async def test_first_regularization_no_longer_applies(
        self, db_session: AsyncSession, make_employee, seed_carryover
    ) -> None:
        employee = make_employee(PROBATION_HIRE)
        await seed_carryover(employee.id, 2025, "6.25", is_first_regularization=True)

        warnings = await validate_hire_date_change(db_session, employee, date(2025, 3, 1))

        assert len(warnings) == 1
        assert "First regularization transfer 2025->2026" in warnings[0]

    async def test_capped_carryover_should_be_transfer(
        self, db_session: AsyncSession, make_employee, seed_carryover
    ) -> None:
        employee = make_employee(date(2025, 3, 1))
        await seed_carryover(employee.id, 2025, "4")

        warnings = await validate_hire_date_change(db_session, employee, date(2025, 8, 1))

        assert len(warnings) == 1
        assert "first regularization transfer" in warnings[0]

    async def test_credits_before_new_hire_month(
        self, db_session: AsyncSession, make_employee, seed_credits
    ) -> None:
        employee = make_employee(PROBATION_HIRE)
        await seed_credits(employee.id, 2025, {8: "1.25", 9: "1.25", 10: "1.25"})

        warnings = await validate_hire_date_change(db_session, employee, date(2025, 9, 15))

        assert warnings == ["2 monthly credit(s) were accrued on or before the new hire month 2025-09"]

    async def test_endpoint(self, async_client: AsyncClient, make_employee, seed_carryover) -> None:
        employee = make_employee(PROBATION_HIRE)
        await seed_carryover(employee.id, 2025, "6.25", is_first_regularization=True)

        resp = await async_client.post(
            f"/users/{employee.id}/hire-date/validate",
            json={"new_hired_date": "2025-03-01"},
            headers=_admin(),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["current_hired_date"] == "2025-07-11"
        assert len(data["warnings"]) == 1
