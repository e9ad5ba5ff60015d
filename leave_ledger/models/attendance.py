# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date

import sqlalchemy as sa
from sqlmodel import Field

from leave_ledger.models.base import UUIDBase


class Attendance(UUIDBase, table=True):
    """Processed attendance for one shift. Written by the ingestion pipeline, read here."""

    __tablename__ = "attendance"
    __table_args__ = (sa.Index("ix_attendance_user_shift", "user_id", "shift_date"),)

    user_id: uuid.UUID = Field(index=True)
    shift_date: date
    status: str = Field(max_length=50)
    tardy_minutes: int = 0
    undertime_minutes: int = 0
