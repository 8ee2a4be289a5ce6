"""
App-level middleware: request timing and access logging.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request

logger = logging.getLogger(__name__)

# Status checks fan out to every provider endpoint; beyond this they feel stuck.
SLOW_REQUEST_SECONDS = 5.0


def register_middleware(app: FastAPI) -> None:
    """Attach the request timer."""

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"

        if response.status_code >= 500:
            level = logging.WARNING
        elif elapsed > SLOW_REQUEST_SECONDS:
            level = logging.INFO
        else:
            level = logging.DEBUG
        logger.log(
            level, "%s %s → %d in %.3fs",
            request.method, request.url.path, response.status_code, elapsed,
        )
        return response
