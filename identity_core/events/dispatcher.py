"""
Post-commit event dispatcher.

Delivery is fire-and-forget and at-most-once. When started, a single
worker task drains a bounded queue so sink writes never overlap; before
start (tests, scripts) deliveries happen inline. Sink failures are
logged and dropped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from loguru import logger

from identity_core.events.models import Event, NotificationRequest
from identity_core.events.sinks import EventSink, NotifySink
from identity_core.runtime.context import RunContext


@dataclass
class _Batch:
    context: RunContext
    events: list[Event] = field(default_factory=list)
    notifications: list[NotificationRequest] = field(default_factory=list)


class Dispatcher:
    def __init__(self, events: EventSink, notifications: NotifySink | None = None, queue_size: int = 1000):
        self.events = events
        self.notifications = notifications
        self._queue: asyncio.Queue[_Batch] | None = None
        self._queue_size = queue_size
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._worker = asyncio.create_task(self._run(self._queue), name="event-dispatcher")
        logger.info("Event dispatcher started")

    async def stop(self, timeout: float = 5.0) -> None:
        """Drain pending deliveries, then stop the worker."""
        if not self.running or self._queue is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Dropping {self._queue.qsize()} undelivered event batches on shutdown")
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        logger.info("Event dispatcher stopped")

    async def dispatch(
        self,
        context: RunContext,
        events: list[Event] | None = None,
        notifications: list[NotificationRequest] | None = None,
    ) -> None:
        """Hand over side effects of a committed transaction."""
        batch = _Batch(context, list(events or []), list(notifications or []))
        if not batch.events and not batch.notifications:
            return
        if self.running and self._queue is not None:
            try:
                self._queue.put_nowait(batch)
            except asyncio.QueueFull:
                logger.warning(f"[{context.request_id}] Event queue full, dropping {len(batch.events)} events")
            return
        await self._deliver(batch)

    async def _run(self, queue: asyncio.Queue[_Batch]) -> None:
        while True:
            batch = await queue.get()
            try:
                await self._deliver(batch)
            finally:
                queue.task_done()

    async def _deliver(self, batch: _Batch) -> None:
        for event in batch.events:
            try:
                await self.events.publish(event, batch.context)
            except Exception as e:
                logger.error(f"[{batch.context.request_id}] Failed to publish {event.name}: {e}")
        if self.notifications is None:
            return
        for request in batch.notifications:
            try:
                await self.notifications.notify(request, batch.context)
            except Exception as e:
                logger.warning(
                    f"[{batch.context.request_id}] Failed to send {request.notification_type.value} notification: {e}"
                )
