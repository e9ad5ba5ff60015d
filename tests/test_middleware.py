from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from httpx import AsyncClient


async def test_request_id_generated(async_client: AsyncClient) -> None:
    response = await async_client.get("/health")
    assert len(response.headers["X-Request-Id"]) == 32


async def test_request_id_echoed(async_client: AsyncClient) -> None:
    response = await async_client.get("/health", headers={"X-Request-Id": "trace-123"})
    assert response.headers["X-Request-Id"] == "trace-123"


async def test_ledger_mutation_logged_with_actor(
    async_client: AsyncClient, caplog: pytest.LogCaptureFixture
) -> None:
    actor = uuid.uuid4()
    with caplog.at_level("INFO", logger="leave_ledger.requests"):
        response = await async_client.post(
            "/credits/accruals/trigger",
            json={},
            headers={"X-User-Id": str(actor), "X-Role": "employee"},
        )
    assert response.status_code == 403
    messages = [r.getMessage() for r in caplog.records if r.name == "leave_ledger.requests"]
    assert len(messages) == 1
    assert messages[0].startswith("POST /credits/accruals/trigger -> 403")
    assert f"user={actor}" in messages[0]
    assert "role=employee" in messages[0]


async def test_health_not_logged(async_client: AsyncClient, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("DEBUG", logger="leave_ledger.requests"):
        await async_client.get("/health")
    assert not [r for r in caplog.records if r.name == "leave_ledger.requests"]


async def test_cors_allows_auth_headers(async_client: AsyncClient) -> None:
    response = await async_client.options(
        "/credits/audit",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "GET",
            "Access-Control-Request-Headers": "X-User-Id, X-Role",
        },
    )
    assert response.status_code == 200
    allowed = response.headers["access-control-allow-headers"].lower()
    assert "x-user-id" in allowed
    assert "x-role" in allowed
