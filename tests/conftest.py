from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from leave_ledger.clock import FixedClock, SystemClock, set_clock
from leave_ledger.db import get_session
from leave_ledger.main import app
from leave_ledger.models import CARRYOVER_MONTH, LeaveCredit, LeaveCreditCarryover, SQLModel
from leave_ledger.services.employee import EmployeeInfo, InMemoryEmployeeService, set_employee_service

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterator

    from sqlalchemy.ext.asyncio import AsyncEngine

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Default "today" for every test unless a test moves the clock.
DEFAULT_TODAY = date(2026, 3, 2)


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """A fresh in-memory database per test, shared across connections via StaticPool."""
    _engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield _engine
    await _engine.dispose()


@pytest.fixture
async def db_session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Yield a database session on the per-test database."""
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
async def async_client(db_session: AsyncSession) -> AsyncIterator[AsyncClient]:
    """Async HTTP client with the database session dependency overridden."""

    async def _override_get_session() -> AsyncIterator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_session] = _override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def clock() -> Iterator[FixedClock]:
    """Pin "today" for the test; move it with ``clock.set(...)``."""
    fixed = FixedClock(DEFAULT_TODAY)
    set_clock(fixed)
    yield fixed
    set_clock(SystemClock())


@pytest.fixture(autouse=True)
def employees() -> Iterator[InMemoryEmployeeService]:
    """Fresh in-memory employee directory for every test."""
    svc = InMemoryEmployeeService()
    set_employee_service(svc)
    yield svc
    set_employee_service(InMemoryEmployeeService())


@pytest.fixture
def make_employee(employees: InMemoryEmployeeService) -> Callable[..., EmployeeInfo]:
    """Seed an employee and return it."""

    def _make(
        hired_date: date | None = date(2024, 1, 15),
        role: str = "Agent",
        *,
        is_active: bool = True,
        name: str = "Test Employee",
    ) -> EmployeeInfo:
        employee = EmployeeInfo(
            id=uuid.uuid4(),
            name=name,
            email=f"{uuid.uuid4().hex[:8]}@example.com",
            role=role,
            hired_date=hired_date,
            is_active=is_active,
        )
        employees.seed(employee)
        return employee

    return _make


@pytest.fixture
def seed_credits(db_session: AsyncSession) -> Callable[..., Awaitable[list[LeaveCredit]]]:
    """Insert credit rows: ``{month: earned}`` or ``{month: (earned, used)}``."""

    async def _seed(
        user_id: uuid.UUID,
        year: int,
        months: dict[int, Decimal | str | tuple[Decimal | str, Decimal | str]],
    ) -> list[LeaveCredit]:
        rows = []
        for month, value in months.items():
            earned, used = value if isinstance(value, tuple) else (value, "0")
            earned, used = Decimal(earned), Decimal(used)
            row = LeaveCredit(
                user_id=user_id,
                year=year,
                month=month,
                credits_earned=earned,
                credits_used=used,
                credits_balance=earned - used,
                accrued_at=date(year, 1, 1) if month == CARRYOVER_MONTH else date(year, month, 1),
            )
            db_session.add(row)
            rows.append(row)
        await db_session.commit()
        return rows

    return _seed


@pytest.fixture
def seed_carryover(db_session: AsyncSession) -> Callable[..., Awaitable[LeaveCreditCarryover]]:
    """Insert a carryover record out of ``from_year``."""

    async def _seed(
        user_id: uuid.UUID,
        from_year: int,
        credits: Decimal | str,
        *,
        is_first_regularization: bool = False,
        cash_converted: bool = False,
        regularization_date: date | None = None,
    ) -> LeaveCreditCarryover:
        amount = Decimal(credits)
        record = LeaveCreditCarryover(
            user_id=user_id,
            from_year=from_year,
            to_year=from_year + 1,
            credits_from_previous_year=amount,
            carryover_credits=amount,
            forfeited_credits=Decimal("0"),
            is_first_regularization=is_first_regularization,
            regularization_date=regularization_date,
            cash_converted=cash_converted,
        )
        db_session.add(record)
        await db_session.commit()
        return record

    return _seed
