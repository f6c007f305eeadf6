"""Lifecycle notification emitted by the engines."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sagaflow.core.models import new_id, utcnow
from sagaflow.types import NotificationType


@dataclass(frozen=True)
class Notification:
    """
    One named lifecycle event.

    Delivery is at-least-once, so sinks that need exactly-once effects
    deduplicate on `id`.
    """

    type: NotificationType
    execution_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: new_id("ntf"))

    @property
    def name(self) -> str:
        return self.type.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "execution_id": self.execution_id,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }
