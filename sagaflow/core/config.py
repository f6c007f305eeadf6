"""
EngineConfig - shared configuration for the workflow and saga engines.

Wires together the collaborators both engines need but which callers
rarely want to pass explicitly:
- State Store (snapshot persistence)
- Notification sinks (logging, metrics, custom)
- Timeouts and notification delivery settings

Engines use the process-wide config (see `configure()`/`get_config()`)
for every collaborator that is not injected directly.

Example:
    >>> from sagaflow import EngineConfig, configure
    >>> from sagaflow.storage import FilesystemStateStore
    >>>
    >>> configure(EngineConfig(
    ...     state_store=FilesystemStateStore("./snapshots"),
    ...     metrics=True,
    ...     default_step_timeout=30.0,
    ... ))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sagaflow.core.logger import get_logger

if TYPE_CHECKING:
    from sagaflow.core.ports import NotificationSink, StateStore

logger = get_logger(__name__)


@dataclass
class EngineConfig:
    """
    Configuration shared by WorkflowCoordinator and SagaController.

    Attributes:
        state_store: Snapshot persistence; defaults to InMemoryStateStore
        sinks: Extra notification sinks
        logging: Add a LoggingNotificationSink to the sink list
        metrics: Add the process-wide PrometheusNotificationSink
        default_step_timeout: Seconds allowed per step when the step sets none
        compensation_timeout: Seconds allowed per compensation action
        notification_max_attempts: Delivery attempts per notification and sink
        notification_retry_delay: Seconds between delivery attempts
        notification_timeout: Seconds allowed per delivery attempt
        log_level: Level used by setup_logging()
        json_logs: Emit structured JSON log lines
    """

    state_store: StateStore | None = None
    sinks: list[NotificationSink] = field(default_factory=list)

    logging: bool = True
    metrics: bool = False

    default_step_timeout: float | None = None
    compensation_timeout: float | None = None

    notification_max_attempts: int = 3
    notification_retry_delay: float = 0.1
    notification_timeout: float | None = 5.0

    log_level: str = "INFO"
    json_logs: bool = False

    def __post_init__(self) -> None:
        if self.notification_max_attempts < 1:
            msg = "notification_max_attempts must be >= 1"
            raise ValueError(msg)
        if self.notification_retry_delay < 0:
            msg = "notification_retry_delay must be >= 0"
            raise ValueError(msg)
        for name in ("default_step_timeout", "compensation_timeout", "notification_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                msg = f"{name} must be positive when set"
                raise ValueError(msg)

        if self.state_store is None:
            from sagaflow.storage.memory import InMemoryStateStore

            self.state_store = InMemoryStateStore()
            logger.debug("Using default InMemoryStateStore")

    @property
    def notification_sinks(self) -> list[NotificationSink]:
        """Configured sinks plus the logging and metrics sinks the flags ask for."""
        sinks: list[NotificationSink] = list(self.sinks)

        if self.logging:
            from sagaflow.notifications.logging import LoggingNotificationSink

            sinks.append(LoggingNotificationSink())

        if self.metrics:
            from sagaflow.monitoring.prometheus import default_prometheus_sink

            sinks.append(default_prometheus_sink())

        return sinks

    def create_dispatcher(self):
        """Build a NotificationDispatcher over `notification_sinks`."""
        from sagaflow.notifications.dispatcher import NotificationDispatcher

        return NotificationDispatcher(
            self.notification_sinks,
            max_attempts=self.notification_max_attempts,
            retry_delay=self.notification_retry_delay,
            delivery_timeout=self.notification_timeout,
        )

    def apply_logging(self) -> None:
        """Install the "sagaflow" console handler for `log_level` and `json_logs`."""
        from sagaflow.monitoring.logging import setup_logging

        setup_logging(self.log_level, json_format=self.json_logs)

    @classmethod
    def from_env(cls, load_dotenv: bool = True) -> EngineConfig:
        """
        Create configuration from environment variables.

        Environment variables:
            SAGAFLOW_STATE_DIR: Use a FilesystemStateStore rooted here
            SAGAFLOW_LOGGING: Add the logging sink (true/false)
            SAGAFLOW_METRICS: Add the Prometheus sink (true/false)
            SAGAFLOW_STEP_TIMEOUT: Default step timeout in seconds
            SAGAFLOW_COMPENSATION_TIMEOUT: Compensation timeout in seconds
            SAGAFLOW_NOTIFY_MAX_ATTEMPTS, SAGAFLOW_NOTIFY_RETRY_DELAY,
            SAGAFLOW_NOTIFY_TIMEOUT: Notification delivery settings
            SAGAFLOW_LOG_LEVEL, SAGAFLOW_JSON_LOGS: Logging output

        Example:
            >>> os.environ["SAGAFLOW_STEP_TIMEOUT"] = "15"
            >>> EngineConfig.from_env().default_step_timeout
            15.0
        """
        from sagaflow.core.env import get_env

        env = get_env()
        if load_dotenv:
            env.load()

        state_store = None
        state_dir = env.get("SAGAFLOW_STATE_DIR")
        if state_dir:
            from sagaflow.storage.filesystem import FilesystemStateStore

            state_store = FilesystemStateStore(state_dir)

        return cls(
            state_store=state_store,
            logging=env.get_bool("SAGAFLOW_LOGGING", True),
            metrics=env.get_bool("SAGAFLOW_METRICS", False),
            default_step_timeout=env.get_float("SAGAFLOW_STEP_TIMEOUT"),
            compensation_timeout=env.get_float("SAGAFLOW_COMPENSATION_TIMEOUT"),
            notification_max_attempts=env.get_int("SAGAFLOW_NOTIFY_MAX_ATTEMPTS", 3),
            notification_retry_delay=env.get_float("SAGAFLOW_NOTIFY_RETRY_DELAY", 0.1),
            notification_timeout=env.get_float("SAGAFLOW_NOTIFY_TIMEOUT", 5.0),
            log_level=env.get("SAGAFLOW_LOG_LEVEL", "INFO") or "INFO",
            json_logs=env.get_bool("SAGAFLOW_JSON_LOGS", False),
        )


_global_config: EngineConfig | None = None


def get_config() -> EngineConfig:
    """Get the process-wide engine configuration."""
    global _global_config
    if _global_config is None:
        _global_config = EngineConfig()
    return _global_config


def configure(config: EngineConfig | None) -> None:
    """Set (or with None, reset) the process-wide engine configuration."""
    global _global_config
    _global_config = config
    if config is not None:
        logger.info(f"sagaflow configured: state_store={type(config.state_store).__name__}")
