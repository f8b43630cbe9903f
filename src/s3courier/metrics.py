"""Prometheus metrics definitions for s3courier.

All client metrics use the ``s3courier_`` prefix.  Collectors are only
registered once :func:`init_metrics` is called; until then the module-level
references stay ``None`` and the transport skips recording.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Request counter  (labels: operation, status)
# ---------------------------------------------------------------------------
requests_total: Counter | None = None

# ---------------------------------------------------------------------------
# Byte counters
# ---------------------------------------------------------------------------
bytes_sent_total: Counter | None = None
bytes_received_total: Counter | None = None

# ---------------------------------------------------------------------------
# Multipart session cleanup
# ---------------------------------------------------------------------------
multipart_aborts_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus collectors.

    Safe to call more than once; only the first call registers collectors in
    the global registry.
    """
    global _initialized
    global requests_total, bytes_sent_total, bytes_received_total, multipart_aborts_total

    if _initialized:
        return

    requests_total = Counter(
        "s3courier_requests_total",
        "Total S3 requests issued by operation and outcome",
        ["operation", "status"],
    )

    bytes_sent_total = Counter(
        "s3courier_bytes_sent_total",
        "Total bytes sent in request bodies",
    )

    bytes_received_total = Counter(
        "s3courier_bytes_received_total",
        "Total bytes received in response bodies",
    )

    multipart_aborts_total = Counter(
        "s3courier_multipart_aborts_total",
        "Multipart upload sessions aborted after cancellation or failure",
    )

    _initialized = True


def record_request(operation: str, status: int, sent: int = 0, received: int = 0) -> None:
    """Record one completed request if metrics are enabled."""
    if not _initialized:
        return
    requests_total.labels(operation=operation, status=str(status)).inc()
    if sent:
        bytes_sent_total.inc(sent)
    if received:
        bytes_received_total.inc(received)


def record_abort() -> None:
    """Record one aborted multipart session if metrics are enabled."""
    if _initialized:
        multipart_aborts_total.inc()
