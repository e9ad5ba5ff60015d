# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Query, status

from leave_ledger.api.deps import AdminDep, AuthDep
from leave_ledger.db import SessionDep
from leave_ledger.exceptions import AppError
from leave_ledger.schemas.request import (
    DecisionPayload,
    LeaveDecisionResponse,
    LeaveRequestListResponse,
    LeaveRequestResponse,
    ShortenLeavePayload,
    SubmitLeavePayload,
)
from leave_ledger.services import request as request_service

requests_router = APIRouter(prefix="/leave-requests", tags=["leave-requests"])


@requests_router.post("", response_model=LeaveRequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_request(
    payload: SubmitLeavePayload,
    session: SessionDep,
    auth: AuthDep,
) -> LeaveRequestResponse:
    """File a new leave request. Returns 422 with every rule it breaks."""
    return await request_service.submit_leave_request(session, auth, payload)


@requests_router.get("", response_model=LeaveRequestListResponse)
async def list_requests(
    session: SessionDep,
    auth: AuthDep,
    user_id: uuid.UUID | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> LeaveRequestListResponse:
    """List leave requests for the caller, or for any user when admin."""
    target = user_id or auth.user_id
    if target != auth.user_id and not auth.is_admin:
        raise AppError("Not authorized to list another employee's requests", status_code=status.HTTP_403_FORBIDDEN)
    return await request_service.list_leave_requests(session, target, status_filter, offset, limit)


@requests_router.get("/{request_id}", response_model=LeaveRequestResponse)
async def get_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> LeaveRequestResponse:
    """Get a single leave request."""
    return await request_service.get_leave_request(session, auth, request_id)


@requests_router.post("/{request_id}/approve", response_model=LeaveDecisionResponse)
async def approve_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AdminDep,
    payload: DecisionPayload | None = None,
) -> LeaveDecisionResponse:
    """Approve a pending leave and deduct its credits (admin only)."""
    return await request_service.approve_leave_request(session, auth, request_id, payload)


@requests_router.post("/{request_id}/deny", response_model=LeaveDecisionResponse)
async def deny_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AdminDep,
    payload: DecisionPayload | None = None,
) -> LeaveDecisionResponse:
    """Deny a pending leave (admin only)."""
    return await request_service.deny_leave_request(session, auth, request_id, payload)


@requests_router.post("/{request_id}/cancel", response_model=LeaveDecisionResponse)
async def cancel_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    payload: DecisionPayload | None = None,
) -> LeaveDecisionResponse:
    """Cancel a pending or approved leave; approved leave gets its credits back."""
    return await request_service.cancel_leave_request(session, auth, request_id, payload)


@requests_router.post("/{request_id}/shorten", response_model=LeaveDecisionResponse)
async def shorten_request(
    request_id: uuid.UUID,
    payload: ShortenLeavePayload,
    session: SessionDep,
    auth: AdminDep,
) -> LeaveDecisionResponse:
    """End an approved leave early and restore the dropped days (admin only)."""
    return await request_service.shorten_leave_request(session, auth, request_id, payload)
