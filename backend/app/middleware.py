from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response
    from starlette.middleware.base import RequestResponseEndpoint

    from app.config import Settings

logger = logging.getLogger(__name__)

ACTOR_HEADERS = ["X-Actor-Id", "X-Role"]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its actor, outcome and timing.

    Ledger writes are worth tracing back to whoever made them, so the acting
    identity is logged next to the status code.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "%s %s -> %d in %.3fs actor=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration,
            request.headers.get("X-Actor-Id", "-"),
        )
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure application middleware."""
    app.add_middleware(RequestLoggingMiddleware)  # ty: ignore[invalid-argument-type]
    app.add_middleware(
        CORSMiddleware,  # ty: ignore[invalid-argument-type]
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", *ACTOR_HEADERS],
        expose_headers=["X-Response-Time"],
    )
