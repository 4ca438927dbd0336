"""ChatBridge – Logging & Metrics.

structlog configuration with PII masking, and the Prometheus counters for
the auto-reply pipeline.
"""

import logging

import structlog
from fastapi import APIRouter, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)

from chatbridge.core.pii_filter import filter_log_record

router = APIRouter(tags=["monitoring"])

# --- Auto-reply metrics ---

REPLY_OUTCOMES = Counter(
    "chatbridge_reply_outcomes_total",
    "Auto-reply outcomes by platform, final state and answer source",
    ["platform", "state", "source"],
)

REPLY_LATENCY = Histogram(
    "chatbridge_reply_duration_seconds",
    "Time from resolver start to final state",
    ["platform"],
)

PROVIDER_FAILURES = Counter(
    "chatbridge_provider_failures_total",
    "Failed provider calls by capability and error kind",
    ["capability", "kind"],
)

SWEEP_RUNS = Counter(
    "chatbridge_sweep_runs_total",
    "Unread sweeps by platform and status",
    ["platform", "status"],
)


@router.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def setup_logging(level: str = "info") -> None:
    """Configure structlog with PII masking."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            filter_log_record,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
