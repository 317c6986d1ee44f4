"""
Event and notification sinks.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import redis.asyncio as aioredis
from loguru import logger
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from identity_core.events.models import Event, NotificationRequest
from identity_core.runtime.context import RunContext
from identity_core.runtime.errors import ErrorCode, RetryableError
from identity_core.runtime.http_client import ServiceHttpClient
from identity_core.runtime.retry import RetryPolicy, with_retry


@runtime_checkable
class EventSink(Protocol):
    async def publish(self, event: Event, context: RunContext) -> None:
        ...


@runtime_checkable
class NotifySink(Protocol):
    async def notify(self, request: NotificationRequest, context: RunContext) -> None:
        ...


class LogEventSink:
    """Write events to the service log."""

    async def publish(self, event: Event, context: RunContext) -> None:
        logger.info(
            f"[{context.request_id}] event {event.name} {event.entity_kind}:{event.entity_id} "
            f"by {event.actor.subject or event.actor.source}"
        )


class LogNotifySink:
    """Fallback when no notification service is configured."""

    async def notify(self, request: NotificationRequest, context: RunContext) -> None:
        logger.info(
            f"[{context.request_id}] notification {request.notification_type.value} "
            f"for {request.entity_kind}:{request.entity_id} -> {[r.value for r in request.receivers]}"
        )


class RedisEventSink:
    """Publish events on Redis pub/sub, one channel per event name."""

    def __init__(self, url: str, channel_prefix: str = "is.events", client: aioredis.Redis | None = None):
        self.channel_prefix = channel_prefix
        self._client = client or aioredis.Redis.from_url(url)

    @with_retry(RetryPolicy(max_attempts=3, base_delay=0.1))
    async def publish(self, event: Event, context: RunContext) -> None:
        channel = f"{self.channel_prefix}.{event.name}"
        try:
            await self._client.publish(channel, event.model_dump_json())
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise RetryableError(ErrorCode.INTERNAL, "Event bus unavailable", cause=e) from e

    async def close(self) -> None:
        await self._client.aclose()


class WebhookNotifySink:
    """POST notification requests to the notification service."""

    def __init__(self, client: ServiceHttpClient, path: str = ""):
        self.client = client
        self.path = path

    async def notify(self, request: NotificationRequest, context: RunContext) -> None:
        await self.client.post_json(self.path, context, request.model_dump(mode="json"))

    async def close(self) -> None:
        await self.client.close()
