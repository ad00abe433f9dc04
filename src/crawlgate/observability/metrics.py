"""Prometheus metrics definitions for crawlgate.

Metrics follow the naming convention: crawlgate_<subsystem>_<name>_<unit>

Categories:
- Queue metrics: backlog by state, latency, admission denials, preemptions
- Job metrics: duration, total count by status
- Rate limiting: decisions by route
- Memory: used bytes, pressure level, monitor actions
- HTTP metrics: request duration, total count
"""

from prometheus_client import Counter, Gauge, Histogram

# -----------------------------------------------------------------------------
# Queue metrics
# -----------------------------------------------------------------------------

QUEUE_SIZE = Gauge(
    "crawlgate_queue_size",
    "Current number of jobs in a queue by state",
    ["queue", "state"],
)

QUEUE_LATENCY = Histogram(
    "crawlgate_queue_latency_seconds",
    "Time jobs spend waiting in queue before processing",
    ["queue"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
)

ADMISSION_DENIED = Counter(
    "crawlgate_admission_denied_total",
    "Submissions refused at admission time",
    ["queue", "reason"],
)

PREEMPTIONS = Counter(
    "crawlgate_preemptions_total",
    "Preemption attempts by result",
    ["queue", "result"],  # result: preempted or conflict
)

# -----------------------------------------------------------------------------
# Job metrics
# -----------------------------------------------------------------------------

JOB_DURATION = Histogram(
    "crawlgate_job_duration_seconds",
    "Job execution duration",
    ["queue", "status"],
    buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0),
)

JOB_TOTAL = Counter(
    "crawlgate_jobs_total",
    "Total number of jobs that reached a terminal state",
    ["queue", "status"],
)

JOB_RETRIES = Counter(
    "crawlgate_job_retries_total",
    "Retries scheduled after a failed attempt",
    ["queue"],
)

# -----------------------------------------------------------------------------
# Rate limiting
# -----------------------------------------------------------------------------

RATE_LIMIT_DECISIONS = Counter(
    "crawlgate_rate_limit_decisions_total",
    "Rate limit checks by route pattern and result",
    ["route", "result"],  # result: allowed or denied
)

TENANT_LIMIT_DENIED = Counter(
    "crawlgate_tenant_limit_denied_total",
    "Tenant limit checks that were refused",
    ["counter"],
)

# -----------------------------------------------------------------------------
# Memory
# -----------------------------------------------------------------------------

MEMORY_USED_BYTES = Gauge(
    "crawlgate_memory_used_bytes",
    "Process memory in use at the last sample",
)

MEMORY_PRESSURE = Gauge(
    "crawlgate_memory_pressure",
    "Memory pressure at the last sample (0 normal, 1 warning, 2 critical)",
)

MEMORY_ACTIONS = Counter(
    "crawlgate_memory_actions_total",
    "Load-shedding actions taken by the memory monitor",
    ["action"],  # action: throttle, release, warning
)

# -----------------------------------------------------------------------------
# HTTP request metrics
# -----------------------------------------------------------------------------

HTTP_REQUEST_DURATION = Histogram(
    "crawlgate_http_request_duration_seconds",
    "HTTP request duration",
    ["method", "endpoint", "status_code"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

HTTP_REQUESTS_TOTAL = Counter(
    "crawlgate_http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"],
)
