"""
Prometheus Metrics for Observability

Tracks processing latency per backend, prediction API calls and poll
attempts. Exposes /api/v1/metrics for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Processing latency per backend method
processing_latency_seconds = Histogram(
    "bgzap_processing_latency_seconds",
    "Time spent processing a background removal request",
    labelnames=["method", "status"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

# Processing outcomes
processing_requests_total = Counter(
    "bgzap_processing_requests_total",
    "Total background removal requests by outcome",
    labelnames=["method", "outcome"]
)

# Operations currently in flight
active_operations_gauge = Gauge(
    "bgzap_active_operations",
    "Number of processing operations currently in flight"
)

# Prediction API calls
prediction_api_calls_total = Counter(
    "bgzap_prediction_api_calls_total",
    "Total number of prediction service calls",
    labelnames=["endpoint", "http_status"]
)

# Poll attempts by observed status
prediction_polls_total = Counter(
    "bgzap_prediction_polls_total",
    "Total number of prediction status queries",
    labelnames=["status"]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Application Info
app_info = Info(
    "bgzap_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_processing_latency(method: str):
    """
    Context manager to track processing latency and in-flight operations.

    Usage:
        with track_processing_latency("remote"):
            # do work
    """
    start = time.time()
    status = "success"
    active_operations_gauge.inc()
    try:
        yield
    except BaseException:
        # includes asyncio.CancelledError for superseded operations
        status = "error"
        raise
    finally:
        active_operations_gauge.dec()
        processing_latency_seconds.labels(method=method, status=status).observe(time.time() - start)


def record_prediction_call(endpoint: str, http_status: int):
    """Record a prediction service call ("create" or "poll")."""
    prediction_api_calls_total.labels(
        endpoint=endpoint,
        http_status=str(http_status)
    ).inc()


def record_poll(status: str):
    """Record one poll attempt and the status it observed."""
    prediction_polls_total.labels(status=status).inc()


def record_processing_outcome(method: str, outcome: str):
    """Record a processing outcome: succeeded, an error kind, or canceled."""
    processing_requests_total.labels(method=method, outcome=outcome).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
