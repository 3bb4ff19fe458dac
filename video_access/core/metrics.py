"""Application metrics (Prometheus).

All metrics are declared here so there is one inventory of what the
service measures; modules import the specific metric and update it at
the point of action.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Access-control metrics
# ---------------------------------------------------------------------------

ACCESS_DECISIONS = Counter(
    "video_access_decisions_total",
    "Video access decisions by outcome and reason code",
    ["outcome", "reason"],  # outcome: granted|denied|fault
)

SESSION_TRANSITIONS = Counter(
    "streaming_sessions_total",
    "Streaming session lifecycle transitions",
    ["transition"],  # started|ended|expired|rejected
)

SIGNED_URLS_ISSUED = Counter(
    "signed_urls_issued_total",
    "Capability URLs minted, by signing backend",
    ["backend"],  # s3|hmac
)

AUDIT_WRITE_FAILURES = Counter(
    "audit_write_failures_total",
    "Access log entries that could not be persisted",
)
