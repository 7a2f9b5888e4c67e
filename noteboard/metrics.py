"""Prometheus metrics for the Noteboard service.

All metric objects are defined here so they can be imported from any module.
"""

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Store metrics
# ---------------------------------------------------------------------------

STORE_OPERATIONS = Counter(
    "noteboard_store_operations_total",
    "Total message store operations",
    ["operation", "status"],  # create, list, update_likes, increment_likes, delete
)

STORE_DURATION = Histogram(
    "noteboard_store_duration_seconds",
    "Duration of message store operations in seconds",
    ["operation"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

EVICTIONS = Counter(
    "noteboard_evictions_total",
    "Notes evicted to keep the board under its cap",
)

# ---------------------------------------------------------------------------
# Rewrite webhook metrics
# ---------------------------------------------------------------------------

REWRITE_REQUESTS = Counter(
    "noteboard_rewrite_requests_total",
    "Total rewrite webhook calls",
    ["status"],  # success, error
)

# ---------------------------------------------------------------------------
# Presence metrics
# ---------------------------------------------------------------------------

ACTIVE_USERS = Gauge(
    "noteboard_active_users",
    "Number of recently active clients",
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS = Counter(
    "noteboard_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_DURATION = Histogram(
    "noteboard_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0, 30.0),
)
