# ruff: noqa: B008, TC001, TC003
"""API endpoints for a user's leave credits: balance, ledger, carryover and checks."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query

from leave_ledger.api.deps import AdminDep, EmployeeDep, validate_user_scope
from leave_ledger.clock import get_clock
from leave_ledger.db import SessionDep
from leave_ledger.exceptions import AppError
from leave_ledger.schemas.accrual import BackfillResponse
from leave_ledger.schemas.credit import (
    BalanceResponse,
    CarryoverListResponse,
    CashConversionPayload,
    CashConversionResponse,
    CreditSummaryResponse,
    HireDateChangePayload,
    HireDateChangeResponse,
    LeaveValidationPayload,
    LedgerListResponse,
    ProjectionResponse,
    RegularizationInfoResponse,
    ValidationResponse,
)
from leave_ledger.services import balance as balance_service
from leave_ledger.services.accrual import backfill_credits
from leave_ledger.services.carryover import (
    convert_carryover_to_cash,
    get_regularization_info,
    validate_hire_date_change,
)
from leave_ledger.services.eligibility import calculate_working_days
from leave_ledger.services.ledger import get_carryover_into
from leave_ledger.services.validation import validate_leave_request

# ---------------------------------------------------------------------------
# Read endpoints: GET /users/{user_id}/credits/...
# ---------------------------------------------------------------------------

user_credits_router = APIRouter(
    prefix="/users/{user_id}/credits",
    tags=["credits"],
    dependencies=[Depends(validate_user_scope)],
)


def _current_year(year: int | None) -> int:
    return year if year is not None else get_clock().today().year


@user_credits_router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    employee: EmployeeDep,
    session: SessionDep,
    year: int | None = Query(default=None, ge=2000, le=2100),
) -> BalanceResponse:
    """Available credits for the year, carryover included."""
    year = _current_year(year)
    balance = await balance_service.get_balance(session, employee, year)
    return BalanceResponse(user_id=employee.id, year=year, balance=balance)


@user_credits_router.get("/summary", response_model=CreditSummaryResponse)
async def get_summary(
    employee: EmployeeDep,
    session: SessionDep,
    year: int | None = Query(default=None, ge=2000, le=2100),
) -> CreditSummaryResponse:
    return await balance_service.get_summary(session, employee, _current_year(year))


@user_credits_router.get("/projection", response_model=ProjectionResponse)
async def get_projection(
    employee: EmployeeDep,
    session: SessionDep,
    target_date: date = Query(),
    year: int | None = Query(default=None, ge=2000, le=2100),
) -> ProjectionResponse:
    """Balance expected on ``target_date`` once the accruals due by then have posted."""
    return await balance_service.get_projection(session, employee, target_date, _current_year(year))


@user_credits_router.get("/ledger", response_model=LedgerListResponse)
async def get_ledger(
    employee: EmployeeDep,
    session: SessionDep,
    year: int | None = Query(default=None, ge=2000, le=2100),
) -> LedgerListResponse:
    """The user's credit rows for the year, carryover month 0 first."""
    return await balance_service.list_credit_entries(session, employee.id, _current_year(year))


@user_credits_router.get("/carryovers", response_model=CarryoverListResponse)
async def list_carryovers(employee: EmployeeDep, session: SessionDep) -> CarryoverListResponse:
    return await balance_service.list_carryovers(session, employee.id)


@user_credits_router.get("/regularization", response_model=RegularizationInfoResponse)
async def get_regularization(employee: EmployeeDep, session: SessionDep) -> RegularizationInfoResponse:
    """Probation status and any credits waiting on the first-regularization transfer."""
    return await get_regularization_info(session, employee)


@user_credits_router.post("/validate", response_model=ValidationResponse)
async def validate_leave(
    payload: LeaveValidationPayload,
    employee: EmployeeDep,
    session: SessionDep,
) -> ValidationResponse:
    """Check a prospective leave against the credit rules without filing it."""
    result = await validate_leave_request(session, employee, payload)
    working_days = (
        calculate_working_days(payload.start_date, payload.end_date)
        if payload.end_date >= payload.start_date
        else 0
    )
    return ValidationResponse(valid=result.valid, errors=result.errors, working_days=working_days)


# ---------------------------------------------------------------------------
# Admin endpoints scoped to one user
# ---------------------------------------------------------------------------


@user_credits_router.post("/backfill", response_model=BackfillResponse)
async def backfill(employee: EmployeeDep, session: SessionDep, _auth: AdminDep) -> BackfillResponse:
    """Accrue every missing month of the current year (admin only)."""
    created = await backfill_credits(session, employee)
    await session.commit()
    return BackfillResponse(created=created)


@user_credits_router.post("/cash-conversion", response_model=CashConversionResponse)
async def cash_conversion(
    employee: EmployeeDep,
    session: SessionDep,
    auth: AdminDep,
    payload: CashConversionPayload | None = None,
) -> CashConversionResponse:
    """Convert the user's carryover into the given year to cash (admin only)."""
    to_year = _current_year(payload.to_year if payload else None)
    carryover = await get_carryover_into(session, employee.id, to_year)
    if carryover is None:
        raise AppError(f"No carryover into {to_year} for this employee", status_code=404)

    result = await convert_carryover_to_cash(session, carryover, auth.user_id)
    if result.success:
        await session.commit()
    return CashConversionResponse(
        success=result.success,
        message=result.message,
        credits_converted=result.credits_converted,
    )


hire_date_router = APIRouter(prefix="/users/{user_id}/hire-date", tags=["credits"])


@hire_date_router.post("/validate", response_model=HireDateChangeResponse)
async def validate_hire_date(
    payload: HireDateChangePayload,
    employee: EmployeeDep,
    session: SessionDep,
    _auth: AdminDep,
) -> HireDateChangeResponse:
    """List ledger history a proposed hire-date edit would contradict (admin only)."""
    warnings = await validate_hire_date_change(session, employee, payload.new_hired_date)
    return HireDateChangeResponse(
        user_id=employee.id,
        current_hired_date=employee.hired_date,
        new_hired_date=payload.new_hired_date,
        warnings=warnings,
    )
