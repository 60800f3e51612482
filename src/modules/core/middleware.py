import re
import time
import uuid
from contextvars import ContextVar
from typing import Callable

import structlog
from django.http import HttpRequest, HttpResponse

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

logger = structlog.get_logger()

# Caller-supplied IDs end up in every log line of the request.
_VALID_CORRELATION_ID = re.compile(r"[A-Za-z0-9._:-]{1,128}")


class CorrelationIdMiddleware:
    """Extract or generate a correlation ID for each request.

    Reads ``X-Request-ID`` (falling back to ``X-Correlation-ID``) from the
    incoming request.  A missing or malformed value is replaced by a new
    UUID4.  The ID is stored in a ContextVar and bound to structlog's
    context so every log line of the request carries it, and is echoed
    back in the ``X-Request-ID`` response header.

    Streaming responses (the live event stream) are logged when the
    response is handed to the server, not when the stream ends.
    """

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        cid = self._resolve_correlation_id(request)
        correlation_id_var.set(cid)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=cid)

        started = time.monotonic()
        logger.info(
            "request_started",
            method=request.method,
            path=request.get_full_path(),
        )

        response = self.get_response(request)

        logger.info(
            "request_finished",
            method=request.method,
            path=request.get_full_path(),
            status_code=response.status_code,
            streaming=response.streaming,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )

        response["X-Request-ID"] = cid
        return response

    @staticmethod
    def _resolve_correlation_id(request: HttpRequest) -> str:
        candidate = request.META.get("HTTP_X_REQUEST_ID") or request.META.get(
            "HTTP_X_CORRELATION_ID", ""
        )
        if candidate and _VALID_CORRELATION_ID.fullmatch(candidate):
            return candidate
        return str(uuid.uuid4())
