"""
Observability module: Metrics and structured logging.
"""

from mentorsync.observability.metrics import (
    MetricsCollector,
    Counter,
    Gauge,
    Histogram,
    SessionMetrics,
)
from mentorsync.observability.logging import StructuredLogger, LogLevel, setup_logging

__all__ = [
    "MetricsCollector",
    "Counter",
    "Gauge",
    "Histogram",
    "SessionMetrics",
    "StructuredLogger",
    "LogLevel",
    "setup_logging",
]
