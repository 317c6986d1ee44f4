"""
Access module factory.

Builds the store, dispatcher and AccessService from settings. Each
factory is cached so the whole process shares one instance.
"""

from __future__ import annotations

from functools import lru_cache

from loguru import logger

from app.access.service import AccessService
from identity_core.auth.cache import TTLCache
from identity_core.auth.membership import MembershipGraph
from identity_core.auth.resolver import PrincipalResolver
from identity_core.config import settings
from identity_core.events.dispatcher import Dispatcher
from identity_core.events.sinks import (
    EventSink,
    LogEventSink,
    LogNotifySink,
    NotifySink,
    RedisEventSink,
    WebhookNotifySink,
)
from identity_core.runtime.http_client import ServiceHttpClient
from identity_core.store.memory import MemoryStore
from identity_core.store.protocols import Store


@lru_cache()
def get_store() -> Store:
    """Get the configured store backend."""
    if settings.STORE_BACKEND == "postgres":
        from identity_core.store.postgres import PostgresStore

        store = PostgresStore()
        if settings.POSTGRES_INIT_SCHEMA:
            store.init_schema()
        return store
    if settings.STORE_BACKEND != "memory":
        raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")
    logger.warning("Using the in-memory store; state is lost on restart")
    return MemoryStore()


def get_event_sink() -> EventSink:
    if settings.EVENTS_BACKEND == "redis":
        return RedisEventSink(settings.REDIS_URL, settings.EVENTS_CHANNEL_PREFIX)
    return LogEventSink()


def get_notify_sink() -> NotifySink:
    if settings.NOTIFICATIONS_URL:
        return WebhookNotifySink(ServiceHttpClient(settings.NOTIFICATIONS_URL, timeout=settings.NOTIFICATIONS_TIMEOUT))
    return LogNotifySink()


@lru_cache()
def get_dispatcher() -> Dispatcher:
    return Dispatcher(get_event_sink(), get_notify_sink())


@lru_cache()
def get_membership_graph() -> MembershipGraph:
    return MembershipGraph(
        TTLCache(maxsize=settings.AUTH_CACHE_MAX_SIZE, ttl_seconds=settings.AUTH_CACHE_MEMBERSHIP_TTL)
    )


@lru_cache()
def get_access_service() -> AccessService:
    """Get the access service instance, wired from settings."""
    store = get_store()
    return AccessService(
        store=store,
        dispatcher=get_dispatcher(),
        graph=get_membership_graph(),
        resolver=PrincipalResolver(store),
    )
