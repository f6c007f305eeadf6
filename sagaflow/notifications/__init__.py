"""
Outbound lifecycle notifications.

Engines publish through a NotificationDispatcher, which delivers to every
configured NotificationSink without ever blocking the engine.
"""

from sagaflow.notifications.base import Notification
from sagaflow.notifications.dispatcher import NotificationDispatcher
from sagaflow.notifications.logging import LoggingNotificationSink
from sagaflow.notifications.memory import InMemoryNotificationSink

__all__ = [
    "InMemoryNotificationSink",
    "LoggingNotificationSink",
    "Notification",
    "NotificationDispatcher",
]
