from __future__ import annotations

import enum


class LeaveType(enum.StrEnum):
    """Categories of leave an employee can file."""

    VACATION = "VL"
    SICK = "SL"
    BIRTHDAY = "BL"
    SPECIAL_PERSONAL = "SPL"
    LOA = "LOA"
    LDV = "LDV"
    UNPAID = "UPTO"


class LeaveRequestStatus(enum.StrEnum):
    """State machine for leave requests."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"


class AttendanceStatus(enum.StrEnum):
    """Attendance outcome for a single shift, as supplied by ingestion."""

    ON_TIME = "on_time"
    TARDY = "tardy"
    UNDERTIME = "undertime"
    HALF_DAY_ABSENCE = "half_day_absence"
    NCNS = "ncns"
    ADVISED_ABSENCE = "advised_absence"
    ON_LEAVE = "on_leave"


class AuditEntityType(enum.StrEnum):
    """Entity type recorded in the audit log."""

    LEAVE_CREDIT = "LEAVE_CREDIT"
    CARRYOVER = "CARRYOVER"
    LEAVE_REQUEST = "LEAVE_REQUEST"


class AuditAction(enum.StrEnum):
    """Action recorded in the audit log."""

    ACCRUE = "ACCRUE"
    DEDUCT = "DEDUCT"
    RESTORE = "RESTORE"
    MATERIALIZE = "MATERIALIZE"
    CARRYOVER = "CARRYOVER"
    FIRST_REGULARIZATION = "FIRST_REGULARIZATION"
    CASH_CONVERT = "CASH_CONVERT"
    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    DENY = "DENY"
    CANCEL = "CANCEL"
    SHORTEN = "SHORTEN"
    RECONCILE = "RECONCILE"
