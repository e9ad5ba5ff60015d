# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field

from leave_ledger.models.base import TimestampMixin, UUIDBase

CARRYOVER_MONTH = 0


def _now_utc() -> datetime:
    return datetime.now(UTC)


class LeaveCredit(UUIDBase, TimestampMixin, table=True):
    """One credit bucket per (user, year, month); month 0 holds carryover."""

    __tablename__ = "leave_credit"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "year", "month", name="uq_leave_credit_user_year_month"),
        sa.CheckConstraint("month >= 0 AND month <= 12", name="ck_leave_credit_month"),
        sa.Index("ix_leave_credit_user_year", "user_id", "year"),
    )

    user_id: uuid.UUID = Field(index=True)
    year: int
    month: int
    credits_earned: Decimal = Field(default=Decimal("0"), sa_type=sa.Numeric(8, 2))
    credits_used: Decimal = Field(default=Decimal("0"), sa_type=sa.Numeric(8, 2))
    credits_balance: Decimal = Field(default=Decimal("0"), sa_type=sa.Numeric(8, 2))
    accrued_at: date | None = None
    version: int = Field(default=1, sa_column_kwargs={"server_default": "1"})
    updated_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=_now_utc,
        sa_type=sa.DateTime(timezone=True),
        sa_column_kwargs={"server_default": sa.func.now(), "onupdate": sa.func.now()},
    )

    @property
    def is_carryover(self) -> bool:
        return self.month == CARRYOVER_MONTH
