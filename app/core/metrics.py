"""Prometheus metric inventory for grading-service.

Every metric the service exports is declared here; the modules that own
the behavior import and bump them.  Scraped from GET /metrics.
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
    # Grading is CPU-only; anything past 250ms is a large course export.
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Grading metrics
# ---------------------------------------------------------------------------

QUIZ_ATTEMPTS_GRADED = Counter(
    "quiz_attempts_graded_total",
    "Quiz attempts graded, by result",
    ["result"],  # passed|failed|timed_out
)

GRADING_FAILURES = Counter(
    "grading_failures_total",
    "Grading or aggregation scopes that failed, by error kind",
    ["kind"],  # GradingValidationError|ConfigurationError|UnsupportedOperationError
)

GRADEBOOK_EXPORTS = Counter(
    "gradebook_exports_total",
    "Gradebook CSV exports served",
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)
