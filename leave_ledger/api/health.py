"""Liveness and ledger reachability."""

import logging
from datetime import date
from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import func, select

from leave_ledger.clock import get_clock
from leave_ledger.config import get_settings
from leave_ledger.db import SessionDep
from leave_ledger.models.carryover import LeaveCreditCarryover
from leave_ledger.models.ledger import LeaveCredit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok", "degraded", "error"]
    version: str
    environment: str
    ledger_date: date
    latest_accrual: date | None = None


@router.get("/health", response_model=HealthResponse)
async def health(session: SessionDep) -> HealthResponse:
    """Report whether the ledger tables answer, the date jobs run against and the newest accrual posted."""
    settings = get_settings()
    status: Literal["ok", "degraded", "error"] = "ok"
    latest_accrual = None

    try:
        result = await session.execute(select(func.max(LeaveCredit.accrued_at)))
        latest_accrual = result.scalar_one_or_none()
        await session.execute(select(LeaveCreditCarryover.id).limit(1))
    except Exception:
        logger.exception("Health check: ledger tables unreachable")
        status = "degraded"

    return HealthResponse(
        status=status,
        version=settings.app_version,
        environment=settings.environment,
        ledger_date=get_clock().today(),
        latest_accrual=latest_accrual,
    )
