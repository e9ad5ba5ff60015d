# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field

from leave_ledger.models.base import TimestampMixin, UUIDBase


class LeaveCreditCarryover(UUIDBase, TimestampMixin, table=True):
    """Year-end transfer of unused credits, one per (user, from_year)."""

    __tablename__ = "leave_credit_carryover"
    __table_args__ = (sa.UniqueConstraint("user_id", "from_year", name="uq_carryover_user_from_year"),)

    user_id: uuid.UUID = Field(index=True)
    from_year: int
    to_year: int = Field(index=True)
    credits_from_previous_year: Decimal = Field(default=Decimal("0"), sa_type=sa.Numeric(8, 2))
    carryover_credits: Decimal = Field(default=Decimal("0"), sa_type=sa.Numeric(8, 2))
    forfeited_credits: Decimal = Field(default=Decimal("0"), sa_type=sa.Numeric(8, 2))
    is_first_regularization: bool = Field(default=False, sa_column_kwargs={"server_default": sa.false()})
    regularization_date: date | None = None
    cash_converted: bool = Field(default=False, sa_column_kwargs={"server_default": sa.false()})
    cash_converted_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    processed_by: uuid.UUID | None = None
    notes: str | None = None
