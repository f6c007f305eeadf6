"""Notification sink that writes lifecycle events to the sagaflow logger."""

import logging

from sagaflow.core.logger import get_logger
from sagaflow.core.ports import NotificationSink
from sagaflow.notifications.base import Notification
from sagaflow.types import NotificationType

_WARNING = {
    NotificationType.EXECUTION_CANCELLED,
    NotificationType.SAGA_FAILED,
    NotificationType.SAGA_COMPENSATED,
    NotificationType.SAGA_CANCELLED,
}
_ERROR = {NotificationType.EXECUTION_FAILED, NotificationType.SAGA_COMPENSATION_FAILED}


class LoggingNotificationSink(NotificationSink):
    """Logs each notification; failures at ERROR, rollbacks at WARNING."""

    name = "logging"

    def __init__(self, logger_name: str = "sagaflow.notifications"):
        self._logger_name = logger_name

    def _level(self, notification: Notification) -> int:
        if notification.type in _ERROR:
            return logging.ERROR
        if notification.type in _WARNING:
            return logging.WARNING
        return logging.INFO

    async def emit(self, notification: Notification) -> None:
        get_logger(self._logger_name).log(
            self._level(notification),
            f"{notification.name}: {notification.execution_id}",
            extra={
                "execution_id": notification.execution_id,
                "notification": notification.name,
                "error_type": notification.payload.get("error_type"),
            },
        )
