"""
Prometheus metrics for sagaflow executions.

PrometheusNotificationSink turns lifecycle notifications into metrics, so
enabling metrics is a matter of adding the sink to the dispatcher (or
setting `EngineConfig(metrics=True)`).

Exposed metrics (default prefix "sagaflow"):
    - sagaflow_workflow_executions_total{status}
    - sagaflow_workflow_execution_duration_seconds
    - sagaflow_saga_executions_total{saga_name, status}
    - sagaflow_saga_steps_completed_total{saga_name}
    - sagaflow_saga_compensations_total{saga_name, outcome}
    - sagaflow_active_executions{kind}

Quick Start:
    >>> from sagaflow.monitoring.prometheus import start_metrics_server
    >>> start_metrics_server(port=8000)
"""

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from sagaflow.core.logger import get_logger
from sagaflow.core.ports import NotificationSink
from sagaflow.notifications.base import Notification
from sagaflow.types import NotificationType

logger = get_logger(__name__)

_WORKFLOW_TERMINAL = {
    NotificationType.EXECUTION_COMPLETED: "completed",
    NotificationType.EXECUTION_FAILED: "failed",
    NotificationType.EXECUTION_CANCELLED: "cancelled",
}
_SAGA_TERMINAL = {
    NotificationType.SAGA_COMPLETED: "completed",
    NotificationType.SAGA_COMPENSATED: "compensated",
    NotificationType.SAGA_COMPENSATION_FAILED: "compensation_failed",
    NotificationType.SAGA_CANCELLED: "cancelled",
}


class PrometheusNotificationSink(NotificationSink):
    """
    Prometheus-backed notification sink.

    Args:
        prefix: Metric name prefix
        registry: Registry to register the metrics with. Metric names are
            unique per registry, so tests pass a fresh CollectorRegistry.
    """

    name = "prometheus"

    def __init__(self, prefix: str = "sagaflow", registry: CollectorRegistry | None = None):
        registry = registry if registry is not None else REGISTRY
        self.registry = registry

        self._workflow_total = Counter(
            f"{prefix}_workflow_executions_total",
            "Finished workflow executions",
            ["status"],
            registry=registry,
        )
        self._workflow_duration = Histogram(
            f"{prefix}_workflow_execution_duration_seconds",
            "Workflow execution duration in seconds",
            buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=registry,
        )
        self._saga_total = Counter(
            f"{prefix}_saga_executions_total",
            "Finished saga executions",
            ["saga_name", "status"],
            registry=registry,
        )
        self._saga_steps = Counter(
            f"{prefix}_saga_steps_completed_total",
            "Saga steps completed",
            ["saga_name"],
            registry=registry,
        )
        self._compensations = Counter(
            f"{prefix}_saga_compensations_total",
            "Saga compensation passes",
            ["saga_name", "outcome"],
            registry=registry,
        )
        self._active = Gauge(
            f"{prefix}_active_executions",
            "Executions currently running",
            ["kind"],
            registry=registry,
        )

    async def emit(self, notification: Notification) -> None:
        kind = notification.type
        payload = notification.payload

        if kind is NotificationType.EXECUTION_STARTED:
            self._active.labels(kind="workflow").inc()
        elif kind in _WORKFLOW_TERMINAL:
            self._active.labels(kind="workflow").dec()
            self._workflow_total.labels(status=_WORKFLOW_TERMINAL[kind]).inc()
            if payload.get("duration") is not None:
                self._workflow_duration.observe(payload["duration"])

        saga_name = payload.get("saga_name", "unknown")
        if kind is NotificationType.SAGA_STARTED:
            self._active.labels(kind="saga").inc()
        elif kind is NotificationType.SAGA_STEP_COMPLETED:
            self._saga_steps.labels(saga_name=saga_name).inc()
        elif kind in _SAGA_TERMINAL:
            self._active.labels(kind="saga").dec()
            self._saga_total.labels(saga_name=saga_name, status=_SAGA_TERMINAL[kind]).inc()
            if kind is NotificationType.SAGA_COMPENSATED:
                self._compensations.labels(saga_name=saga_name, outcome="success").inc()
            elif kind is NotificationType.SAGA_COMPENSATION_FAILED:
                self._compensations.labels(saga_name=saga_name, outcome="failure").inc()


_default_sink: PrometheusNotificationSink | None = None


def default_prometheus_sink() -> PrometheusNotificationSink:
    """Process-wide sink registered with the default registry (created once)."""
    global _default_sink
    if _default_sink is None:
        _default_sink = PrometheusNotificationSink()
    return _default_sink


def start_metrics_server(port: int = 8000, addr: str = "0.0.0.0") -> None:
    """
    Start a Prometheus HTTP metrics server.

    Example:
        >>> start_metrics_server(port=8000)
        >>> # Metrics available at http://localhost:8000/metrics
    """
    start_http_server(port, addr)
    logger.info(f"Prometheus metrics server started on port {port}")
