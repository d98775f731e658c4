"""Application metrics using the Prometheus client library.

All metrics live in this one inventory.  Other modules import the metric
they own and increment it at the point of action.

  COUNTER:   only goes up; use rate() for per-second views.
  GAUGE:     goes up and down; a snapshot of current state.
  HISTOGRAM: bucketed observations; histogram_quantile() gives p95/p99.
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
    # Uploads dominate the upper buckets
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Domain metrics
# ---------------------------------------------------------------------------

REPORT_TRANSITIONS = Counter(
    "report_transitions_total",
    "Report lifecycle transitions by action and outcome",
    ["action", "outcome"],  # outcome: "ok" or "conflict"
)

QUOTA_REJECTIONS = Counter(
    "quota_rejections_total",
    "Operations rejected by plan limits",
    ["resource"],  # "interns", "admins" or "storage"
)

STORAGE_OPERATIONS = Counter(
    "storage_operations_total",
    "Storage backend calls by operation and result",
    ["operation", "result"],  # operation: upload|delete|download
)

UPLOADED_BYTES = Counter(
    "attachment_uploaded_bytes_total",
    "Bytes accepted into the storage backend",
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)
