"""In-memory notification sink for tests and embedding applications."""

from sagaflow.core.ports import NotificationSink
from sagaflow.notifications.base import Notification
from sagaflow.types import NotificationType


class InMemoryNotificationSink(NotificationSink):
    """Records every delivered notification in arrival order."""

    name = "memory"

    def __init__(self):
        self.notifications: list[Notification] = []

    async def emit(self, notification: Notification) -> None:
        self.notifications.append(notification)

    def types(self, execution_id: str | None = None) -> list[str]:
        return [n.type.value for n in self.for_execution(execution_id)]

    def for_execution(self, execution_id: str | None) -> list[Notification]:
        if execution_id is None:
            return list(self.notifications)
        return [n for n in self.notifications if n.execution_id == execution_id]

    def of_type(self, type: NotificationType) -> list[Notification]:
        return [n for n in self.notifications if n.type is type]

    def clear(self) -> None:
        self.notifications.clear()
