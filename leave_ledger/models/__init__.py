from sqlmodel import SQLModel

from leave_ledger.models.attendance import Attendance
from leave_ledger.models.audit import AuditLog
from leave_ledger.models.base import TimestampMixin, UUIDBase
from leave_ledger.models.carryover import LeaveCreditCarryover
from leave_ledger.models.enums import (
    AttendanceStatus,
    AuditAction,
    AuditEntityType,
    LeaveRequestStatus,
    LeaveType,
)
from leave_ledger.models.ledger import CARRYOVER_MONTH, LeaveCredit
from leave_ledger.models.request import LeaveRequest

__all__ = [
    "CARRYOVER_MONTH",
    "Attendance",
    "AttendanceStatus",
    "AuditAction",
    "AuditEntityType",
    "AuditLog",
    "LeaveCredit",
    "LeaveCreditCarryover",
    "LeaveRequest",
    "LeaveRequestStatus",
    "LeaveType",
    "SQLModel",
    "TimestampMixin",
    "UUIDBase",
]
