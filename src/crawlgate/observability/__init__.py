"""Observability module for crawlgate.

This module provides Prometheus metrics, structured logging, and request tracing.
"""

from crawlgate.observability.logging import configure_logging, get_logger
from crawlgate.observability.metrics import (
    ADMISSION_DENIED,
    HTTP_REQUEST_DURATION,
    HTTP_REQUESTS_TOTAL,
    JOB_DURATION,
    JOB_RETRIES,
    JOB_TOTAL,
    MEMORY_ACTIONS,
    MEMORY_PRESSURE,
    MEMORY_USED_BYTES,
    PREEMPTIONS,
    QUEUE_LATENCY,
    QUEUE_SIZE,
    RATE_LIMIT_DECISIONS,
    TENANT_LIMIT_DENIED,
)
from crawlgate.observability.middleware import MetricsMiddleware

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    # Metrics
    "ADMISSION_DENIED",
    "HTTP_REQUEST_DURATION",
    "HTTP_REQUESTS_TOTAL",
    "JOB_DURATION",
    "JOB_RETRIES",
    "JOB_TOTAL",
    "MEMORY_ACTIONS",
    "MEMORY_PRESSURE",
    "MEMORY_USED_BYTES",
    "PREEMPTIONS",
    "QUEUE_LATENCY",
    "QUEUE_SIZE",
    "RATE_LIMIT_DECISIONS",
    "TENANT_LIMIT_DENIED",
    # Middleware
    "MetricsMiddleware",
]
