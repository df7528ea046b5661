"""Prometheus metrics definitions for s3wire.

All s3wire metrics use the ``s3wire_`` prefix for namespace isolation.
These are client-side counters: what the client sent and how the service
answered.

Metrics are opt-in.  Until ``init_metrics()`` is called the module-level
references stay ``None`` and call sites skip recording.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Request counters  (labels: method, status)
# ---------------------------------------------------------------------------
requests_total: Counter | None = None
request_errors_total: Counter | None = None

# ---------------------------------------------------------------------------
# Byte counters
# ---------------------------------------------------------------------------
bytes_sent_total: Counter | None = None

# ---------------------------------------------------------------------------
# Region discovery
# ---------------------------------------------------------------------------
region_lookups_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Safe to call more than once; collectors are registered in the global
    registry on the first call only.
    """
    global _initialized
    global requests_total, request_errors_total, bytes_sent_total, region_lookups_total

    if _initialized:
        return

    requests_total = Counter(
        "s3wire_requests_total",
        "Total HTTP requests sent by method and response status",
        ["method", "status"],
    )

    request_errors_total = Counter(
        "s3wire_request_errors_total",
        "Total S3 error responses by error code",
        ["code"],
    )

    bytes_sent_total = Counter(
        "s3wire_bytes_sent_total",
        "Total bytes sent in request bodies",
    )

    region_lookups_total = Counter(
        "s3wire_region_lookups_total",
        "Total bucket location lookups sent to the service",
    )

    _initialized = True
