import logging
import time
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from soulaware.logs import get_logger, log_event

logger = get_logger("soulaware.http")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Accepts or generates X-Request-Id, keeps it on request.state, and echoes it on the response.

    Also emits one JSON access-log line per request with method, path, status and latency.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable):
        start = time.perf_counter()
        req_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = req_id

        response = await call_next(request)
        response.headers["X-Request-Id"] = req_id

        log_event(
            logger,
            "http_request",
            logging.INFO,
            requestId=req_id,
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            latencyMs=int((time.perf_counter() - start) * 1000),
        )
        return response


def request_id_of(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id") or ""
