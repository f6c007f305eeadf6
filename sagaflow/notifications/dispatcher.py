"""
Non-blocking notification dispatcher.

Engines call `publish()`, which only enqueues and returns immediately. Each
sink owns an ordered queue drained by its own worker task, so a slow or
unavailable sink delays nothing but its own deliveries:

    engine ──publish()──► [queue sink A] ──worker──► sink A.emit()
                     └──► [queue sink B] ──worker──► sink B.emit()

A failed delivery is retried up to `max_attempts` times, each attempt
bounded by `delivery_timeout`. Deliveries that still fail are logged and
dropped; sink errors never reach the engines.
"""

import asyncio
from collections.abc import Iterable
from typing import Any

from sagaflow.core.logger import get_logger
from sagaflow.core.ports import NotificationSink
from sagaflow.execution.retry import Sleep
from sagaflow.notifications.base import Notification
from sagaflow.types import NotificationType

logger = get_logger(__name__)


class _SinkChannel:
    """Queue plus worker for one sink."""

    def __init__(self, sink: NotificationSink, dispatcher: "NotificationDispatcher"):
        self.sink = sink
        self._dispatcher = dispatcher
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def sink_name(self) -> str:
        return getattr(self.sink, "name", type(self.sink).__name__)

    def _ensure_worker(self) -> asyncio.Queue:
        loop = asyncio.get_running_loop()
        if self._queue is None or self._loop is not loop:
            self._loop = loop
            self._queue = asyncio.Queue()
            self._worker = None
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run(self._queue))
        return self._queue

    def put(self, notification: Notification) -> None:
        self._ensure_worker().put_nowait(notification)

    async def _run(self, queue: asyncio.Queue) -> None:
        worker = asyncio.current_task()
        while True:
            notification = await queue.get()
            try:
                await self._dispatcher._deliver(self.sink_name, self.sink, notification)
            finally:
                queue.task_done()
            # on 3.11 wait_for() drops a cancel that races a finished emit()
            if worker is not None and worker.cancelling():
                raise asyncio.CancelledError

    async def join(self) -> None:
        if self._queue is not None and self._loop is asyncio.get_running_loop():
            await self._queue.join()

    async def close(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None or worker.done():
            return
        if self._loop is not asyncio.get_running_loop():
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass


class NotificationDispatcher:
    """
    Fan-out of lifecycle notifications to sinks.

    Args:
        sinks: Initial sinks
        max_attempts: Delivery attempts per notification and sink
        retry_delay: Seconds to wait between attempts
        delivery_timeout: Seconds allowed per attempt (None = unbounded)
        sleep: Awaitable used between attempts (injectable for tests)

    Example:
        >>> dispatcher = NotificationDispatcher([InMemoryNotificationSink()])
        >>> dispatcher.notify(NotificationType.SAGA_STARTED, "saga_1", {"saga_name": "order"})
        >>> await dispatcher.drain()
    """

    def __init__(
        self,
        sinks: Iterable[NotificationSink] = (),
        max_attempts: int = 3,
        retry_delay: float = 0.1,
        delivery_timeout: float | None = 5.0,
        sleep: Sleep = asyncio.sleep,
    ):
        if max_attempts < 1:
            msg = "max_attempts must be >= 1"
            raise ValueError(msg)
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.delivery_timeout = delivery_timeout
        self._sleep = sleep
        self._channels: list[_SinkChannel] = []
        for sink in sinks:
            self.add_sink(sink)

    @property
    def sinks(self) -> list[NotificationSink]:
        return [channel.sink for channel in self._channels]

    def add_sink(self, sink: NotificationSink) -> None:
        self._channels.append(_SinkChannel(sink, self))

    def publish(self, notification: Notification) -> None:
        """Enqueue for every sink; never blocks and never raises for sink problems."""
        for channel in self._channels:
            channel.put(notification)

    def notify(
        self,
        type: NotificationType,
        execution_id: str,
        payload: dict[str, Any] | None = None,
    ) -> Notification:
        notification = Notification(type=type, execution_id=execution_id, payload=payload or {})
        self.publish(notification)
        return notification

    async def _deliver(self, sink_name: str, sink: NotificationSink, notification: Notification) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                if self.delivery_timeout is None:
                    await sink.emit(notification)
                else:
                    await asyncio.wait_for(sink.emit(notification), timeout=self.delivery_timeout)
                return True
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"Notification {notification.name} for {notification.execution_id} "
                    f"not delivered to {sink_name} (attempt {attempt}/{self.max_attempts}): {e!r}"
                )
                if attempt < self.max_attempts and self.retry_delay > 0:
                    await self._sleep(self.retry_delay)

        logger.error(
            f"Dropping notification {notification.name} for {notification.execution_id}: "
            f"{sink_name} failed {self.max_attempts} times"
        )
        return False

    async def drain(self) -> None:
        """Wait until every queued notification was delivered or dropped."""
        for channel in self._channels:
            await channel.join()

    async def aclose(self) -> None:
        """Drain, then stop the workers."""
        await self.drain()
        for channel in self._channels:
            await channel.close()
