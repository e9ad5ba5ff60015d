# ruff: noqa: B008, TC003
from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import Depends, Header, Path, status

from leave_ledger.exceptions import AppError
from leave_ledger.schemas.auth import AuthContext
from leave_ledger.services.employee import EmployeeInfo
from leave_ledger.services.request import get_employee_or_404


async def get_auth_context(
    x_user_id: uuid.UUID = Header(),
    x_role: str = Header(default="employee"),
) -> AuthContext:
    """Extract dev auth context from request headers."""
    return AuthContext(user_id=x_user_id, role=x_role)


AuthDep = Annotated[AuthContext, Depends(get_auth_context)]


async def require_admin(
    auth: AuthDep,
) -> AuthContext:
    """Require admin role for the request."""
    if not auth.is_admin:
        raise AppError("Admin access required", status_code=status.HTTP_403_FORBIDDEN)
    return auth


AdminDep = Annotated[AuthContext, Depends(require_admin)]


async def validate_user_scope(
    user_id: uuid.UUID = Path(),
    auth: AuthContext = Depends(get_auth_context),
) -> AuthContext:
    """Employees may only read their own credits; admins may read anyone's."""
    if user_id != auth.user_id and not auth.is_admin:
        raise AppError("Not authorized to access another employee's credits", status_code=status.HTTP_403_FORBIDDEN)
    return auth


async def get_path_employee(user_id: uuid.UUID = Path()) -> EmployeeInfo:
    """Resolve the ``{user_id}`` path segment to an employee. Raises 404 if unknown."""
    return await get_employee_or_404(user_id)


EmployeeDep = Annotated[EmployeeInfo, Depends(get_path_employee)]
