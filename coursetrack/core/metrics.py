"""Prometheus metric inventory for coursetrack.

Every metric the service exports is declared here; the modules that own
the behaviour import the metric and increment it at the point of action.
Scraped from GET /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by MetricsMiddleware)
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
# Progress engine metrics
# ---------------------------------------------------------------------------

PROGRESS_SIGNALS = Counter(
    "progress_signals_total",
    "Content signals received by kind and outcome",
    ["kind", "outcome"],  # kind: view|attempt|attendance; outcome: applied|duplicate|rejected
)

CONTENT_COMPLETIONS = Counter(
    "content_completions_total",
    "Content-Progress entries that transitioned into completed",
    ["content_type"],
)

ATTEMPT_RESETS = Counter(
    "attempt_resets_total",
    "Admin-triggered attempt resets",
)

DUPLICATIONS = Counter(
    "catalog_duplications_total",
    "Topic/course duplications by scope and outcome",
    ["scope", "outcome"],  # scope: topic|course; outcome: committed|rolled_back
)

ATTENDANCE_RECORDS = Counter(
    "attendance_records_processed_total",
    "Live-session attendance records evaluated",
    ["result"],  # completed|incomplete|not_enrolled
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # hit|miss
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)
