"""
Shared fixtures: an in-memory store, recording sinks and a wired service.
"""

from __future__ import annotations

import pytest

from app.access.service import AccessService
from identity_core.auth.cluster import ClusterAuthService
from identity_core.auth.membership import MembershipGraph
from identity_core.auth.resolver import PrincipalResolver
from identity_core.events.dispatcher import Dispatcher
from identity_core.store.memory import MemoryStore
from tests.fakes import RecordingEventSink, RecordingNotifySink

CLUSTER_SECRET = "test-cluster-secret-long-enough-for-hs256"


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def notifications() -> RecordingNotifySink:
    return RecordingNotifySink()


@pytest.fixture
def cluster() -> ClusterAuthService:
    return ClusterAuthService(secret=CLUSTER_SECRET, issuer="test")


@pytest.fixture
def resolver(store, cluster) -> PrincipalResolver:
    return PrincipalResolver(store, cluster=cluster, admin_rights_all=True, require_contact_validation=False)


@pytest.fixture
def service(store, events, notifications, resolver) -> AccessService:
    # Dispatcher is not started, so deliveries happen inline.
    return AccessService(
        store=store,
        dispatcher=Dispatcher(events, notifications),
        graph=MembershipGraph(),
        resolver=resolver,
        allow_legacy_delete=True,
        id_blocklist=["admin"],
        max_page_limit=100,
    )
