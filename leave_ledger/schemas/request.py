# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from leave_ledger.models.enums import LeaveRequestStatus, LeaveType

# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class SubmitLeavePayload(BaseModel):
    """Request body for filing a leave. ``user_id`` defaults to the caller."""

    user_id: uuid.UUID | None = None
    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str | None = Field(default=None, max_length=1000)
    medical_cert_submitted: bool = False
    short_notice_override: bool = False

    @model_validator(mode="after")
    def _validate_dates(self) -> Self:
        if self.end_date < self.start_date:
            msg = "end_date must be on or after start_date"
            raise ValueError(msg)
        return self


class DecisionPayload(BaseModel):
    """Request body for approve/deny/cancel actions."""

    note: str | None = Field(default=None, max_length=1000)


class ShortenLeavePayload(BaseModel):
    """Request body for ending an approved leave early."""

    new_end_date: date
    reason: str | None = Field(default=None, max_length=1000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LeaveRequestResponse(BaseModel):
    """Response schema for a single leave request."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    leave_type: LeaveType
    start_date: date
    end_date: date
    days_requested: Decimal
    reason: str | None
    medical_cert_submitted: bool
    status: LeaveRequestStatus
    credits_deducted: Decimal | None
    credits_year: int | None
    decided_at: datetime | None
    decided_by: uuid.UUID | None
    decision_note: str | None
    created_at: datetime


class LeaveDecisionResponse(BaseModel):
    """A leave request after a state change, with what the ledger did."""

    request: LeaveRequestResponse
    credits_message: str | None = None
    credits_changed: Decimal = Decimal("0")


class LeaveRequestListResponse(BaseModel):
    """Paginated list of leave requests."""

    items: list[LeaveRequestResponse]
    total: int
