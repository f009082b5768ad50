"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Authorization metrics
auth_failures_total = Counter(
    "auth_failures_total",
    "Rejected authorization attempts",
    ["method", "code"],  # method: session, api_key, admin
)

rate_limited_total = Counter(
    "rate_limited_total",
    "Requests rejected by the per-tenant rate limiter",
)

api_keys_issued_total = Counter(
    "api_keys_issued_total",
    "API keys issued",
)

# Account linking metrics
connect_callbacks_total = Counter(
    "connect_callbacks_total",
    "OAuth callbacks classified by outcome",
    ["outcome"],  # error, success, awaiting_entity_selection, unrecognized
)

connection_attempts_total = Counter(
    "connection_attempts_total",
    "Connection attempt state transitions",
    ["platform", "state"],
)

# Upstream connector metrics
upstream_calls_total = Counter(
    "upstream_calls_total",
    "Total upstream connector calls",
    ["platform", "operation", "status"],
)

upstream_call_duration = Histogram(
    "upstream_call_duration_seconds",
    "Upstream connector call duration in seconds",
    ["platform", "operation"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
