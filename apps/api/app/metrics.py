from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

booking_notifications_total = Counter(
    "booking_notifications_total",
    "Notification delivery attempts by kind and outcome",
    ["kind", "outcome"],
)

booking_contract_signatures_total = Counter(
    "booking_contract_signatures_total",
    "Accepted contract signatures by party",
    ["party"],
)

booking_projects_provisioned_total = Counter(
    "booking_projects_provisioned_total",
    "Project provisioning attempts by outcome",
    ["outcome"],
)

booking_firm_offer_holds_expired = Gauge(
    "booking_firm_offer_holds_expired",
    "Unconfirmed firm offers whose hold has lapsed, as of the last sweep",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_TOKEN_PATH_RE = re.compile(r"/(public|sign)/[A-Za-z0-9_\-]+")


def _sanitize_path(path: str) -> str:
    without_tokens = _TOKEN_PATH_RE.sub(r"/\1/{token}", path)
    return _UUID_RE.sub("{id}", without_tokens)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(path_format, str) and path_format:
            return path_format
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_notification(kind: str, outcome: str) -> None:
    booking_notifications_total.labels(kind=kind, outcome=outcome).inc()


def observe_contract_signature(party: str) -> None:
    booking_contract_signatures_total.labels(party=party).inc()


def observe_project_provisioning(outcome: str) -> None:
    booking_projects_provisioned_total.labels(outcome=outcome).inc()


def set_expired_holds(count: int) -> None:
    booking_firm_offer_holds_expired.set(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
