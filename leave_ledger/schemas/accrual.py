# ruff: noqa: TC003
from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Self

from pydantic import BaseModel, Field, model_validator


class AccrualTriggerPayload(BaseModel):
    """Optional target month for a manual accrual run; defaults to the current month."""

    year: int | None = Field(default=None, ge=2000, le=2100)
    month: int | None = Field(default=None, ge=1, le=12)

    @model_validator(mode="after")
    def _validate_pair(self) -> Self:
        if (self.year is None) != (self.month is None):
            msg = "year and month must be given together"
            raise ValueError(msg)
        return self


class AccrualRunResponse(BaseModel):
    """Response from the accrual trigger endpoint."""

    year: int
    month: int
    processed: int
    accrued: int
    skipped: int
    errors: int
    total_credits: Decimal


class BackfillResponse(BaseModel):
    created: int


class CarryoverTriggerPayload(BaseModel):
    from_year: int | None = Field(default=None, ge=2000, le=2100)


class CarryoverRunResponse(BaseModel):
    """Response from the year-end carryover trigger."""

    from_year: int
    to_year: int
    processed: int
    skipped: int
    errors: int
    total_carryover: Decimal
    total_forfeited: Decimal


class RegularizationTriggerPayload(BaseModel):
    year: int | None = Field(default=None, ge=2000, le=2100)


class RegularizationRunResponse(BaseModel):
    """Response from the first-regularization trigger."""

    year: int
    processed: int
    skipped: int
    errors: int
    total_transferred: Decimal


class BulkCashConversionResponse(BaseModel):
    to_year: int
    processed: int
    skipped: int
    errors: int
    total_converted: Decimal


class LedgerIssueResponse(BaseModel):
    """One inconsistency found by the ledger audit."""

    type: str
    user_id: str
    details: str
    carryover_id: uuid.UUID | None = None


class LedgerAuditResponse(BaseModel):
    year: int
    users_checked: int
    issues: list[LedgerIssueResponse]
    total: int


class LedgerFixResponse(BaseModel):
    """Response from the ledger repair trigger."""

    year: int
    fixed: int
    unfixed: int
    errors: int
    actions: list[str]
