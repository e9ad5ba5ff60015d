# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Ledger rows
# ---------------------------------------------------------------------------


class LeaveCreditResponse(BaseModel):
    """One monthly (or month-0 carryover) credit row."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    year: int
    month: int
    credits_earned: Decimal
    credits_used: Decimal
    credits_balance: Decimal
    accrued_at: date | None
    version: int


class LedgerListResponse(BaseModel):
    """A user's credit rows for one year, month 0 first."""

    items: list[LeaveCreditResponse]
    total: int


# ---------------------------------------------------------------------------
# Carryover
# ---------------------------------------------------------------------------


class CarryoverResponse(BaseModel):
    """A year-end or first-regularization carryover record."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    from_year: int
    to_year: int
    credits_from_previous_year: Decimal
    carryover_credits: Decimal
    forfeited_credits: Decimal
    is_first_regularization: bool
    regularization_date: date | None
    cash_converted: bool
    cash_converted_at: datetime | None
    processed_by: uuid.UUID | None
    notes: str | None
    created_at: datetime


class CarryoverListResponse(BaseModel):
    items: list[CarryoverResponse]
    total: int


class CashConversionResponse(BaseModel):
    """Outcome of converting one carryover to cash."""

    success: bool
    message: str
    credits_converted: Decimal


class CashConversionPayload(BaseModel):
    """Request body for a single cash conversion; defaults to the current year's carryover."""

    to_year: int | None = None


class BulkCashConversionPayload(BaseModel):
    to_year: int | None = None


# ---------------------------------------------------------------------------
# Balance and summary
# ---------------------------------------------------------------------------


class BalanceResponse(BaseModel):
    """Available credits for one year, carryover included."""

    user_id: uuid.UUID
    year: int
    balance: Decimal


class ProjectionResponse(BaseModel):
    """Balance expected on a future date from accruals not yet posted."""

    user_id: uuid.UUID
    year: int
    target_date: date
    current_balance: Decimal
    projected_balance: Decimal
    pending_accruals: int


class CreditSummaryResponse(BaseModel):
    """Everything the leave screens show about a user's credits for a year."""

    user_id: uuid.UUID
    year: int
    is_eligible: bool
    eligibility_date: date | None
    monthly_rate: Decimal
    total_earned: Decimal
    total_used: Decimal
    balance: Decimal
    pending_credits: Decimal
    carryover: CarryoverResponse | None
    carryover_balance: Decimal
    carryover_expires_on: date | None
    credits: list[LeaveCreditResponse]


# ---------------------------------------------------------------------------
# Regularization
# ---------------------------------------------------------------------------


class PendingRegularizationResponse(BaseModel):
    """Probation credits waiting for the first-regularization transfer."""

    is_pending: bool
    credits: Decimal
    months_accrued: int
    from_year: int | None
    to_year: int | None
    regularization_date: date | None


class RegularizationInfoResponse(BaseModel):
    user_id: uuid.UUID
    hired_date: date | None
    regularization_date: date | None
    is_regularized: bool
    days_until_regularization: int | None
    has_first_regularization: bool
    pending: PendingRegularizationResponse


# ---------------------------------------------------------------------------
# Validation and hire-date checks
# ---------------------------------------------------------------------------


class LeaveValidationPayload(BaseModel):
    """A prospective leave to check against the credit rules."""

    leave_type: str = Field(min_length=1, max_length=10)
    start_date: date
    end_date: date
    credits_year: int | None = None
    short_notice_override: bool = False


class ValidationResponse(BaseModel):
    valid: bool
    errors: list[str]
    working_days: Decimal


class HireDateChangePayload(BaseModel):
    new_hired_date: date


class HireDateChangeResponse(BaseModel):
    """Warnings raised by a proposed hire-date edit. Nothing is recalculated."""

    user_id: uuid.UUID
    current_hired_date: date | None
    new_hired_date: date
    warnings: list[str]
