"""
End-to-end authorization flows through AccessService and the in-memory store.
"""

import asyncio
import threading

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from app.access.service import AccessService
from identity_core.auth.resolver import PrincipalResolver
from identity_core.domain.identifiers import ApplicationID, GatewayID, OrganizationID
from identity_core.domain.rights import NO_RIGHTS, Right, Rights
from identity_core.events.dispatcher import Dispatcher
from identity_core.runtime.errors import (
    EntityNeedsCollaboratorError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
)
from identity_core.store.memory import MemoryStore
from tests.fakes import RecordingEventSink, auth_context, grant, seed_entity, seed_token, seed_user

APP_A = ApplicationID("app-a")
APP_B = ApplicationID("app-b")
GTW_1 = GatewayID("gtw-1")
ACME = OrganizationID("acme")

GATEWAY_GRANTS = [
    Rights.of(Right.GATEWAY_ALL),
    Rights.of(Right.GATEWAY_INFO),
    Rights.of(Right.GATEWAY_INFO, Right.GATEWAY_SETTINGS_COLLABORATORS),
    NO_RIGHTS,
]
ORGANIZATION_GRANTS = [Rights.of(Right.ORGANIZATION_ALL), Rights.of(Right.ORGANIZATION_INFO), NO_RIGHTS]

membership_changes = st.lists(
    st.tuples(
        st.integers(0, 2),
        st.sampled_from(["set-gateway", "set-organization", "delete-gateway"]),
        st.integers(0, 3),
        st.integers(0, 3),
    ),
    max_size=12,
)


def user_auth(service, store, user, scope=None):
    if scope is None:
        return auth_context(service, seed_token(store, user))
    return auth_context(service, seed_token(store, user, scope))


class TestKeyIssueAndUse:
    @pytest.mark.asyncio
    async def test_key_is_bound_to_entity_and_rights(self, service, store):
        alice = seed_user(store, "alice")
        seed_entity(store, APP_A, alice)
        seed_entity(store, APP_B, alice)

        issued = await service.create_api_key(
            user_auth(service, store, alice),
            APP_A,
            "ci",
            Rights.of(Right.APPLICATION_INFO, Right.APPLICATION_DEVICES_READ),
        )
        key_auth = auth_context(service, issued.key)

        with store.transaction() as tx:
            service.evaluator.require(tx, key_auth.principal, APP_A, Right.APPLICATION_INFO)
            with pytest.raises(PermissionDeniedError):
                service.evaluator.require(tx, key_auth.principal, APP_B, Right.APPLICATION_INFO)
        with pytest.raises(PermissionDeniedError):
            await service.create_api_key(key_auth, APP_A, "", Rights.of(Right.APPLICATION_DELETE))


class TestExactRights:
    @pytest.mark.asyncio
    async def test_cannot_grant_unheld_right(self, service, store):
        alice, bob, carol = (seed_user(store, u) for u in ("alice", "bob", "carol"))
        seed_entity(store, APP_A, alice)
        grant(
            store,
            bob,
            APP_A,
            Rights.of(Right.APPLICATION_INFO, Right.APPLICATION_DEVICES_READ, Right.APPLICATION_SETTINGS_COLLABORATORS),
        )

        with pytest.raises(PermissionDeniedError) as exc:
            await service.set_collaborator(
                user_auth(service, store, bob),
                APP_A,
                carol,
                Rights.of(Right.APPLICATION_INFO, Right.APPLICATION_DELETE),
            )

        assert exc.value.attributes["missing_rights"] == ["RIGHT_APPLICATION_DELETE"]


class TestLastOwner:
    @pytest.mark.asyncio
    async def test_sole_owner_cannot_downgrade_until_second_owner_exists(self, service, store):
        alice, dave = seed_user(store, "alice"), seed_user(store, "dave")
        seed_entity(store, GTW_1, alice)
        auth = user_auth(service, store, alice)

        with pytest.raises(EntityNeedsCollaboratorError):
            await service.set_collaborator(auth, GTW_1, alice, Rights.of(Right.GATEWAY_INFO))

        await service.set_collaborator(auth, GTW_1, dave, Rights.of(Right.GATEWAY_ALL))
        await service.set_collaborator(auth, GTW_1, alice, Rights.of(Right.GATEWAY_INFO))

        with store.transaction() as tx:
            assert tx.get_membership(alice, GTW_1) == Rights.of(Right.GATEWAY_INFO)

    def test_concurrent_owner_removals_keep_an_owner(self, service, store):
        alice, dave = seed_user(store, "alice"), seed_user(store, "dave")
        seed_entity(store, GTW_1, alice)
        grant(store, dave, GTW_1, Rights.of(Right.GATEWAY_ALL))
        alice_auth = user_auth(service, store, alice)
        dave_auth = user_auth(service, store, dave)
        barrier = threading.Barrier(2)
        outcomes: list[str] = []

        def remove(auth, account):
            barrier.wait(timeout=5)
            try:
                asyncio.run(service.delete_collaborator(auth, GTW_1, account))
                outcomes.append("ok")
            except (EntityNeedsCollaboratorError, PermissionDeniedError):
                outcomes.append("rejected")

        threads = [
            threading.Thread(target=remove, args=(alice_auth, dave)),
            threading.Thread(target=remove, args=(dave_auth, alice)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert sorted(outcomes) == ["ok", "rejected"]
        with store.transaction() as tx:
            assert service.graph.has_owner(tx, GTW_1)


class TestOrganizationTransitivity:
    @pytest.mark.asyncio
    async def test_rights_follow_organization_membership(self, service, store):
        olivia, carol = seed_user(store, "olivia"), seed_user(store, "carol")
        seed_entity(store, ACME, olivia, Rights.of(Right.ORGANIZATION_ALL))
        grant(store, carol, ACME, Rights.of(Right.ORGANIZATION_ALL))
        seed_entity(store, APP_A, ACME, Rights.of(Right.APPLICATION_ALL))
        carol_auth = user_auth(service, store, carol)

        assert await service.list_rights(carol_auth, APP_A) == Rights.of(Right.APPLICATION_ALL)

        await service.delete_collaborator(user_auth(service, store, olivia), ACME, carol)

        assert await service.list_rights(carol_auth, APP_A) == NO_RIGHTS


class TestScopeNarrowing:
    @pytest.mark.asyncio
    async def test_token_scope_limits_rights(self, service, store):
        alice = seed_user(store, "alice")
        seed_entity(store, APP_A, alice)

        rights = await service.list_rights(user_auth(service, store, alice, Rights.of(Right.APPLICATION_INFO)), APP_A)

        assert rights == Rights.of(Right.APPLICATION_INFO)


class TestLegacyUpdate:
    @pytest.mark.asyncio
    async def test_update_without_mask_and_rights_deletes_key(self, service, store, events):
        alice = seed_user(store, "alice")
        seed_entity(store, GTW_1, alice)
        auth = user_auth(service, store, alice)
        issued = await service.create_api_key(auth, GTW_1, "legacy", Rights.of(Right.GATEWAY_INFO))

        result = await service.update_api_key(auth, GTW_1, issued.api_key.id, rights=NO_RIGHTS)

        assert result is None
        assert events.names[-1] == "gateway.api-key.delete"
        with store.transaction() as tx:
            assert tx.get_api_key(issued.api_key.id) is None


class TestOrganizationPurge:
    @pytest.mark.asyncio
    async def test_purge_rejected_while_organization_is_sole_owner(self, service, store, events):
        olivia = seed_user(store, "olivia")
        seed_entity(store, ACME, olivia)
        seed_entity(store, APP_A, ACME, Rights.of(Right.APPLICATION_ALL))

        with pytest.raises(EntityNeedsCollaboratorError):
            await service.purge_entity(user_auth(service, store, olivia), ACME)

        with store.transaction() as tx:
            assert tx.entity_exists(ACME)
            assert service.graph.owners(tx, APP_A) == [olivia]
        assert "organization.purge" not in events.names

    @pytest.mark.asyncio
    async def test_purge_succeeds_once_entities_have_direct_owners(self, service, store):
        olivia = seed_user(store, "olivia")
        seed_entity(store, ACME, olivia)
        seed_entity(store, APP_A, ACME, Rights.of(Right.APPLICATION_ALL))
        grant(store, olivia, APP_A, Rights.of(Right.APPLICATION_ALL))

        await service.purge_entity(user_auth(service, store, olivia), ACME)

        with store.transaction() as tx:
            assert not tx.entity_exists(ACME)
            assert tx.get_membership(ACME, APP_A) is None
            assert service.graph.owners(tx, APP_A) == [olivia]


class TestOwnershipUnderRandomChanges:
    @settings(max_examples=40, deadline=None)
    @given(membership_changes)
    def test_every_commit_leaves_an_owner(self, plan):
        store = MemoryStore()
        service = AccessService(
            store,
            Dispatcher(RecordingEventSink()),
            resolver=PrincipalResolver(store, admin_rights_all=True, require_contact_validation=False),
        )
        users = [seed_user(store, f"user-{i}") for i in range(3)]
        seed_entity(store, ACME, users[0])
        seed_entity(store, GTW_1, users[0])
        grant(store, ACME, GTW_1, Rights.of(Right.GATEWAY_ALL))
        accounts = [*users, ACME]
        auths = [user_auth(service, store, u) for u in users]

        async def apply(actor, operation, account, rights):
            auth = auths[actor]
            if operation == "set-gateway":
                await service.set_collaborator(auth, GTW_1, accounts[account], GATEWAY_GRANTS[rights])
            elif operation == "set-organization":
                await service.set_collaborator(auth, ACME, users[account % 3], ORGANIZATION_GRANTS[rights % 3])
            else:
                await service.delete_collaborator(auth, GTW_1, accounts[account])

        for step in plan:
            try:
                asyncio.run(apply(*step))
            except (EntityNeedsCollaboratorError, PermissionDeniedError, NotFoundError, InvalidArgumentError):
                pass
            with store.transaction() as tx:
                assert service.graph.has_owner(tx, GTW_1)
                assert service.graph.has_owner(tx, ACME)
