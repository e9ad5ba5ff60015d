# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field

from leave_ledger.models.base import TimestampMixin, UUIDBase
from leave_ledger.models.enums import LeaveRequestStatus


class LeaveRequest(UUIDBase, TimestampMixin, table=True):
    """An employee's leave request and what the ledger did for it."""

    __tablename__ = "leave_request"
    __table_args__ = (sa.Index("ix_leave_request_user_status", "user_id", "status"),)

    user_id: uuid.UUID = Field(index=True)
    leave_type: str = Field(max_length=10)
    start_date: date
    end_date: date
    days_requested: Decimal = Field(sa_type=sa.Numeric(6, 2))
    reason: str | None = None
    medical_cert_submitted: bool = Field(default=False, sa_column_kwargs={"server_default": sa.false()})
    status: str = Field(
        default=LeaveRequestStatus.PENDING, max_length=20, index=True, sa_column_kwargs={"server_default": "pending"}
    )
    credits_deducted: Decimal | None = Field(default=None, sa_type=sa.Numeric(6, 2))
    credits_year: int | None = None
    decided_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    decided_by: uuid.UUID | None = None
    decision_note: str | None = None
