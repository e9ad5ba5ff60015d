# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlmodel import col

from leave_ledger.clock import get_clock
from leave_ledger.exceptions import AppError, LeaveValidationError
from leave_ledger.models.enums import AuditAction, AuditEntityType, LeaveRequestStatus, LeaveType
from leave_ledger.models.request import LeaveRequest
from leave_ledger.schemas.credit import LeaveValidationPayload
from leave_ledger.schemas.request import LeaveDecisionResponse, LeaveRequestListResponse, LeaveRequestResponse
from leave_ledger.services.audit import model_to_audit_dict, write_audit_log
from leave_ledger.services.eligibility import calculate_working_days
from leave_ledger.services.employee import get_employee_service
from leave_ledger.services.ledger import deduct_credits, restore_credits, restore_partial_credits
from leave_ledger.services.validation import should_deduct_sl_credits, validate_leave_request

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from leave_ledger.schemas.auth import AuthContext
    from leave_ledger.schemas.request import DecisionPayload, ShortenLeavePayload, SubmitLeavePayload
    from leave_ledger.services.employee import EmployeeInfo

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = [LeaveRequestStatus.PENDING.value, LeaveRequestStatus.APPROVED.value]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_request_response(request: LeaveRequest) -> LeaveRequestResponse:
    return LeaveRequestResponse.model_validate(request)


async def _get_request_or_404(session: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
    """Fetch a request by ID. Raises 404 if not found."""
    result = await session.execute(select(LeaveRequest).where(col(LeaveRequest.id) == request_id))
    leave_request = result.scalar_one_or_none()
    if leave_request is None:
        raise AppError("Leave request not found", status_code=404)
    return leave_request


async def get_employee_or_404(user_id: uuid.UUID) -> EmployeeInfo:
    employee = await get_employee_service().get_employee(user_id)
    if employee is None:
        raise AppError("Employee not found", status_code=404)
    return employee


async def _check_request_overlap(
    session: AsyncSession,
    user_id: uuid.UUID,
    start_date: date,
    end_date: date,
) -> None:
    """Raise 409 if a pending or approved leave overlaps the inclusive date range."""
    result = await session.execute(
        select(LeaveRequest).where(
            col(LeaveRequest.user_id) == user_id,
            col(LeaveRequest.status).in_(_ACTIVE_STATUSES),
            col(LeaveRequest.start_date) <= end_date,
            col(LeaveRequest.end_date) >= start_date,
        )
    )
    if result.scalars().first() is not None:
        raise AppError("Leave overlaps with an existing pending or approved request", status_code=409)


async def _finish(
    session: AsyncSession,
    leave_request: LeaveRequest,
    auth: AuthContext,
    action: AuditAction,
    before: dict[str, object] | None,
) -> None:
    await session.flush()
    await write_audit_log(
        session,
        user_id=leave_request.user_id,
        entity_type=AuditEntityType.LEAVE_REQUEST,
        entity_id=leave_request.id,
        action=action,
        actor_id=auth.user_id,
        before_json=before,
        after_json=model_to_audit_dict(leave_request),
    )
    await session.commit()
    await session.refresh(leave_request)


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


async def submit_leave_request(
    session: AsyncSession,
    auth: AuthContext,
    payload: SubmitLeavePayload,
) -> LeaveRequestResponse:
    """File a leave for the caller, or for anyone when the caller is an admin.

    Every credit rule is checked up front and all violations are returned
    together. Only admins may bypass the two-week notice.
    """
    user_id = payload.user_id or auth.user_id
    if user_id != auth.user_id and not auth.is_admin:
        raise AppError("Not authorized to file leave for another employee", status_code=403)
    if payload.short_notice_override and not auth.is_admin:
        raise AppError("Only admins can override the advance notice rule", status_code=403)

    employee = await get_employee_or_404(user_id)

    validation = await validate_leave_request(
        session,
        employee,
        LeaveValidationPayload(
            leave_type=payload.leave_type.value,
            start_date=payload.start_date,
            end_date=payload.end_date,
            short_notice_override=payload.short_notice_override,
        ),
    )
    if not validation.valid:
        raise LeaveValidationError(validation.errors)

    await _check_request_overlap(session, user_id, payload.start_date, payload.end_date)

    leave_request = LeaveRequest(
        user_id=user_id,
        leave_type=payload.leave_type.value,
        start_date=payload.start_date,
        end_date=payload.end_date,
        days_requested=calculate_working_days(payload.start_date, payload.end_date),
        reason=payload.reason,
        medical_cert_submitted=payload.medical_cert_submitted,
        status=LeaveRequestStatus.PENDING.value,
    )
    session.add(leave_request)
    await _finish(session, leave_request, auth, AuditAction.SUBMIT, None)
    return _build_request_response(leave_request)


async def approve_leave_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: DecisionPayload | None = None,
) -> LeaveDecisionResponse:
    """Approve a pending leave and deduct its credits in the same transaction.

    Deduction is best effort: a short or empty balance is recorded on the
    request but does not block approval. Sick leave without a medical
    certificate, eligibility or enough balance is recorded as unpaid time.
    """
    leave_request = await _get_request_or_404(session, request_id)
    if leave_request.status != LeaveRequestStatus.PENDING.value:
        raise AppError("Only pending requests can be approved", status_code=409)

    employee = await get_employee_or_404(leave_request.user_id)
    before = model_to_audit_dict(leave_request)

    try:
        if leave_request.leave_type == LeaveType.SICK.value and not await should_deduct_sl_credits(
            session, employee, leave_request
        ):
            leave_request.credits_deducted = Decimal("0")
            credits_message = "Sick leave recorded as unpaid time; no credits deducted"
            credits_changed = Decimal("0")
        else:
            result = await deduct_credits(session, leave_request, actor_id=auth.user_id)
            credits_message = result.message
            credits_changed = result.credits

        leave_request.status = LeaveRequestStatus.APPROVED.value
        leave_request.decided_at = get_clock().now()
        leave_request.decided_by = auth.user_id
        leave_request.decision_note = payload.note if payload else None
        session.add(leave_request)
        await _finish(session, leave_request, auth, AuditAction.APPROVE, before)
    except Exception:
        await session.rollback()
        raise

    logger.info("Approved leave request=%s: %s", leave_request.id, credits_message)
    return LeaveDecisionResponse(
        request=_build_request_response(leave_request),
        credits_message=credits_message,
        credits_changed=credits_changed,
    )


async def deny_leave_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: DecisionPayload | None = None,
) -> LeaveDecisionResponse:
    """Deny a pending leave. Nothing was deducted, so the ledger is untouched."""
    leave_request = await _get_request_or_404(session, request_id)
    if leave_request.status != LeaveRequestStatus.PENDING.value:
        raise AppError("Only pending requests can be denied", status_code=409)

    before = model_to_audit_dict(leave_request)
    leave_request.status = LeaveRequestStatus.DENIED.value
    leave_request.decided_at = get_clock().now()
    leave_request.decided_by = auth.user_id
    leave_request.decision_note = payload.note if payload else None
    session.add(leave_request)
    await _finish(session, leave_request, auth, AuditAction.DENY, before)
    return LeaveDecisionResponse(request=_build_request_response(leave_request))


async def cancel_leave_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: DecisionPayload | None = None,
) -> LeaveDecisionResponse:
    """Cancel a pending or approved leave, restoring any credits it used.

    The employee who filed the request or an admin can cancel.
    """
    leave_request = await _get_request_or_404(session, request_id)
    if leave_request.status not in _ACTIVE_STATUSES:
        raise AppError("Only pending or approved requests can be cancelled", status_code=409)
    if auth.user_id != leave_request.user_id and not auth.is_admin:
        raise AppError("Not authorized to cancel this request", status_code=403)

    before = model_to_audit_dict(leave_request)
    credits_message = None
    credits_changed = Decimal("0")
    try:
        if leave_request.status == LeaveRequestStatus.APPROVED.value:
            result = await restore_credits(session, leave_request, actor_id=auth.user_id)
            credits_message = result.message
            credits_changed = result.credits

        leave_request.status = LeaveRequestStatus.CANCELLED.value
        if payload and payload.note:
            leave_request.decision_note = payload.note
        session.add(leave_request)
        await _finish(session, leave_request, auth, AuditAction.CANCEL, before)
    except Exception:
        await session.rollback()
        raise

    return LeaveDecisionResponse(
        request=_build_request_response(leave_request),
        credits_message=credits_message,
        credits_changed=credits_changed,
    )


async def shorten_leave_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: ShortenLeavePayload,
) -> LeaveDecisionResponse:
    """End an approved leave early and give back the credits for the dropped days."""
    leave_request = await _get_request_or_404(session, request_id)
    if leave_request.status != LeaveRequestStatus.APPROVED.value:
        raise AppError("Only approved requests can be shortened", status_code=409)
    if not leave_request.start_date <= payload.new_end_date < leave_request.end_date:
        raise AppError("New end date must fall within the current leave and before its end", status_code=400)

    before = model_to_audit_dict(leave_request)
    new_days = calculate_working_days(leave_request.start_date, payload.new_end_date)
    dropped_days = leave_request.days_requested - new_days

    try:
        result = await restore_partial_credits(
            session,
            leave_request,
            dropped_days,
            payload.reason or "",
            actor_id=auth.user_id,
        )
        leave_request.end_date = payload.new_end_date
        leave_request.days_requested = new_days
        session.add(leave_request)
        await _finish(session, leave_request, auth, AuditAction.SHORTEN, before)
    except Exception:
        await session.rollback()
        raise

    return LeaveDecisionResponse(
        request=_build_request_response(leave_request),
        credits_message=result.message,
        credits_changed=result.credits,
    )


async def get_leave_request(session: AsyncSession, auth: AuthContext, request_id: uuid.UUID) -> LeaveRequestResponse:
    """Get a single request by ID. Employees only see their own."""
    leave_request = await _get_request_or_404(session, request_id)
    if auth.user_id != leave_request.user_id and not auth.is_admin:
        raise AppError("Leave request not found", status_code=404)
    return _build_request_response(leave_request)


async def list_leave_requests(
    session: AsyncSession,
    user_id: uuid.UUID,
    status_filter: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> LeaveRequestListResponse:
    """A user's requests, newest first."""
    filters = [col(LeaveRequest.user_id) == user_id]
    if status_filter is not None:
        filters.append(col(LeaveRequest.status) == status_filter)

    count_result = await session.execute(select(func.count()).select_from(LeaveRequest).where(*filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(LeaveRequest)
        .where(*filters)
        .order_by(col(LeaveRequest.start_date).desc())
        .offset(offset)
        .limit(limit)
    )
    return LeaveRequestListResponse(
        items=[_build_request_response(r) for r in result.scalars().all()],
        total=total,
    )
