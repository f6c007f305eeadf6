"""Observability: structured logging and Prometheus metrics."""

from sagaflow.monitoring.logging import (
    ExecutionContextFilter,
    ExecutionJsonFormatter,
    bind_execution_context,
    execution_context,
    setup_logging,
)
from sagaflow.monitoring.prometheus import (
    PrometheusNotificationSink,
    default_prometheus_sink,
    start_metrics_server,
)

__all__ = [
    "ExecutionContextFilter",
    "ExecutionJsonFormatter",
    "PrometheusNotificationSink",
    "bind_execution_context",
    "default_prometheus_sink",
    "execution_context",
    "setup_logging",
    "start_metrics_server",
]
