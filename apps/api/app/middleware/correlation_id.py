from __future__ import annotations

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import new_correlation_id, reset_correlation_id, set_correlation_id

CORRELATION_HEADER = "x-correlation-id"
_MAX_HEADER_LENGTH = 128


def _incoming_correlation_id(request: Request) -> str | None:
    value = (request.headers.get(CORRELATION_HEADER) or "").strip()
    if not value or len(value) > _MAX_HEADER_LENGTH:
        return None
    return value


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = _incoming_correlation_id(request) or new_correlation_id()
        request.state.correlation_id = correlation_id
        token = set_correlation_id(correlation_id)
        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
