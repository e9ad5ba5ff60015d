# ruff: noqa: B008, TC001, TC003
"""Admin API endpoints for the batch jobs and the ledger audit."""

from __future__ import annotations

from fastapi import APIRouter, Query

from leave_ledger.api.deps import AdminDep
from leave_ledger.db import SessionDep
from leave_ledger.schemas.accrual import (
    AccrualRunResponse,
    AccrualTriggerPayload,
    BulkCashConversionResponse,
    CarryoverRunResponse,
    CarryoverTriggerPayload,
    LedgerAuditResponse,
    LedgerFixResponse,
    LedgerIssueResponse,
    RegularizationRunResponse,
    RegularizationTriggerPayload,
)
from leave_ledger.schemas.credit import BulkCashConversionPayload
from leave_ledger.services.accrual import run_monthly_accruals
from leave_ledger.services.carryover import (
    process_bulk_cash_conversion,
    run_carryover_processing,
    run_regularization_processing,
)
from leave_ledger.services.reconcile import audit_leave_credits, fix_ledger_issues

credits_admin_router = APIRouter(prefix="/credits", tags=["credits-admin"])


@credits_admin_router.post("/accruals/trigger", response_model=AccrualRunResponse)
async def trigger_accruals(
    session: SessionDep,
    _auth: AdminDep,
    payload: AccrualTriggerPayload | None = None,
) -> AccrualRunResponse:
    """Manually run the monthly accrual for every employee (admin only).

    Defaults to the current month. Months already accrued are skipped.
    """
    result = await run_monthly_accruals(
        session,
        payload.year if payload else None,
        payload.month if payload else None,
    )
    return AccrualRunResponse(
        year=result.year,
        month=result.month,
        processed=result.processed,
        accrued=result.accrued,
        skipped=result.skipped,
        errors=result.errors,
        total_credits=result.total_credits,
    )


@credits_admin_router.post("/carryover/process", response_model=CarryoverRunResponse)
async def trigger_carryover(
    session: SessionDep,
    auth: AdminDep,
    payload: CarryoverTriggerPayload | None = None,
) -> CarryoverRunResponse:
    """Run year-end carryover out of ``from_year`` (default: last year)."""
    result = await run_carryover_processing(session, payload.from_year if payload else None, auth.user_id)
    return CarryoverRunResponse(
        from_year=result.from_year,
        to_year=result.to_year,
        processed=result.processed,
        skipped=result.skipped,
        errors=result.errors,
        total_carryover=result.total_carryover,
        total_forfeited=result.total_forfeited,
    )


@credits_admin_router.post("/regularization/process", response_model=RegularizationRunResponse)
async def trigger_regularization(
    session: SessionDep,
    auth: AdminDep,
    payload: RegularizationTriggerPayload | None = None,
) -> RegularizationRunResponse:
    """Run first-regularization transfers for everyone who has passed probation."""
    result = await run_regularization_processing(session, payload.year if payload else None, auth.user_id)
    return RegularizationRunResponse(
        year=result.year,
        processed=result.processed,
        skipped=result.skipped,
        errors=result.errors,
        total_transferred=result.total_transferred,
    )


@credits_admin_router.post("/cash-conversion/process", response_model=BulkCashConversionResponse)
async def trigger_cash_conversion(
    session: SessionDep,
    auth: AdminDep,
    payload: BulkCashConversionPayload | None = None,
) -> BulkCashConversionResponse:
    """Convert every unconverted ordinary carryover into ``to_year`` to cash."""
    result = await process_bulk_cash_conversion(session, payload.to_year if payload else None, auth.user_id)
    return BulkCashConversionResponse(
        to_year=result.to_year,
        processed=result.processed,
        skipped=result.skipped,
        errors=result.errors,
        total_converted=result.total_converted,
    )


@credits_admin_router.get("/audit", response_model=LedgerAuditResponse)
async def audit(
    session: SessionDep,
    _auth: AdminDep,
    year: int | None = Query(default=None, ge=2000, le=2100),
) -> LedgerAuditResponse:
    """Report ledger and carryover inconsistencies. Changes nothing."""
    report = await audit_leave_credits(session, year)
    issues = [
        LedgerIssueResponse(type=i.type, user_id=i.user_id, details=i.details, carryover_id=i.carryover_id)
        for i in report.issues
    ]
    return LedgerAuditResponse(
        year=report.year,
        users_checked=report.users_checked,
        issues=issues,
        total=len(issues),
    )


@credits_admin_router.post("/audit/fix", response_model=LedgerFixResponse)
async def fix_audit_issues(
    session: SessionDep,
    auth: AdminDep,
    year: int | None = Query(default=None, ge=2000, le=2100),
) -> LedgerFixResponse:
    """Repair the carryover issues the audit can fix on its own; the rest are reported as unfixed."""
    result = await fix_ledger_issues(session, year, auth.user_id)
    return LedgerFixResponse(
        year=result.year,
        fixed=result.fixed,
        unfixed=result.unfixed,
        errors=result.errors,
        actions=result.actions,
    )
