from __future__ import annotations

import logging
import time
import uuid
from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.middleware.base import RequestResponseEndpoint
    from starlette.responses import Response
    from starlette.types import ASGIApp

    from leave_ledger.config import Settings

REQUEST_ID_HEADER = "X-Request-Id"
# Dev auth headers the API reads in ``api.deps``.
AUTH_HEADERS = ["X-User-Id", "X-Role"]
IGNORED_LOG_PATHS = {"/health"}


class LedgerRequestLogMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log who called which ledger endpoint.

    Ledger mutations are all POSTs, so those log at INFO with the acting user;
    reads log at DEBUG.
    """

    def __init__(self, app: ASGIApp, logger: logging.Logger | None = None) -> None:
        super().__init__(app)
        self._logger = logger or logging.getLogger("leave_ledger.requests")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        start = time.monotonic()

        response = await call_next(request)

        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        if request.url.path not in IGNORED_LOG_PATHS:
            level = logging.INFO if request.method == "POST" else logging.DEBUG
            self._logger.log(
                level,
                "%s %s -> %d user=%s role=%s request_id=%s (%.1fms)",
                request.method,
                request.url.path,
                response.status_code,
                request.headers.get("X-User-Id", "-"),
                request.headers.get("X-Role", "-"),
                request_id,
                (time.monotonic() - start) * 1000,
            )
        return response


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure application middleware."""
    app.add_middleware(LedgerRequestLogMiddleware)
    app.add_middleware(
        CORSMiddleware,  # ty: ignore[invalid-argument-type]
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", REQUEST_ID_HEADER, *AUTH_HEADERS],
        expose_headers=[REQUEST_ID_HEADER],
    )
