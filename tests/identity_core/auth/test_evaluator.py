"""Unit tests for RightsEvaluator."""

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from identity_core.auth.cache import TTLCache
from identity_core.auth.evaluator import RightsEvaluator
from identity_core.auth.membership import MembershipGraph
from identity_core.domain.auth import CredentialSource, Principal, Restriction
from identity_core.domain.identifiers import (
    ApplicationID,
    EndDeviceID,
    EntityKind,
    GatewayID,
    OrganizationID,
    UserID,
)
from identity_core.domain.rights import (
    ALL_RIGHTS,
    LIMITED_USER_RIGHTS,
    Right,
    Rights,
    kind_rights,
)
from identity_core.runtime.errors import PermissionDeniedError
from identity_core.store.memory import MemoryStore
from tests.fakes import grant, seed_entity, seed_user

APP = ApplicationID("app-1")

application_rights = st.sets(st.sampled_from(kind_rights(EntityKind.APPLICATION).to_list())).map(Rights)


@pytest.fixture
def evaluator() -> RightsEvaluator:
    return RightsEvaluator(MembershipGraph())


def token_principal(user: UserID, scope: Rights = ALL_RIGHTS, **kwargs) -> Principal:
    return Principal(source=CredentialSource.ACCESS_TOKEN, subject=user, granted=scope, **kwargs)


class TestAccessTokens:
    def test_member_rights(self, store, evaluator):
        alice = seed_user(store, "alice")
        seed_entity(store, APP, alice, Rights.of(Right.APPLICATION_INFO, Right.APPLICATION_LINK))

        with store.transaction() as tx:
            rights = evaluator.list_rights(tx, token_principal(alice), APP)

        assert rights == Rights.of(Right.APPLICATION_INFO, Right.APPLICATION_LINK)

    def test_scope_narrows_member_rights(self, store, evaluator):
        alice = seed_user(store, "alice")
        seed_entity(store, APP, alice)

        with store.transaction() as tx:
            rights = evaluator.list_rights(tx, token_principal(alice, Rights.of(Right.APPLICATION_INFO)), APP)

        assert rights == Rights.of(Right.APPLICATION_INFO)

    def test_non_member_has_nothing(self, store, evaluator):
        alice = seed_user(store, "alice")

        with store.transaction() as tx:
            assert not evaluator.list_rights(tx, token_principal(alice), APP)

    def test_user_holds_all_rights_on_self(self, store, evaluator):
        alice = seed_user(store, "alice")

        with store.transaction() as tx:
            rights = evaluator.list_rights(tx, token_principal(alice), alice)

        assert rights == Rights.of(Right.USER_ALL)

    def test_end_device_uses_application_rights(self, store, evaluator):
        alice = seed_user(store, "alice")
        seed_entity(store, APP, alice, Rights.of(Right.APPLICATION_DEVICES_READ))

        with store.transaction() as tx:
            rights = evaluator.list_rights(tx, token_principal(alice), EndDeviceID(APP, "dev-1"))

        assert rights == Rights.of(Right.APPLICATION_DEVICES_READ)

    def test_restricted_user_keeps_limited_rights_on_self_only(self, store, evaluator):
        alice = seed_user(store, "alice")
        seed_entity(store, APP, alice)
        principal = token_principal(alice, restrictions=frozenset({Restriction.PENDING_APPROVAL}))

        with store.transaction() as tx:
            on_self = evaluator.list_rights(tx, principal, alice)
            on_app = evaluator.list_rights(tx, principal, APP)

        assert on_self == LIMITED_USER_RIGHTS
        assert not on_app


class TestAPIKeys:
    def test_key_acts_on_own_entity_only(self, store, evaluator):
        gateway = GatewayID("gtw-1")
        principal = Principal(
            source=CredentialSource.API_KEY,
            subject=gateway,
            granted=Rights.of(Right.GATEWAY_INFO, Right.GATEWAY_LINK),
            key_id="KEY",
        )

        with store.transaction() as tx:
            own = evaluator.list_rights(tx, principal, gateway)
            other = evaluator.list_rights(tx, principal, GatewayID("gtw-2"))

        assert own == Rights.of(Right.GATEWAY_INFO, Right.GATEWAY_LINK)
        assert not other

    def test_foreign_rights_on_key_are_ignored(self, store, evaluator):
        principal = Principal(
            source=CredentialSource.API_KEY,
            subject=APP,
            granted=Rights.of(Right.APPLICATION_INFO, Right.GATEWAY_INFO),
        )

        with store.transaction() as tx:
            assert evaluator.list_rights(tx, principal, APP) == Rights.of(Right.APPLICATION_INFO)


class TestUniversalRights:
    def test_cluster_peer_has_every_right(self, store, evaluator):
        principal = Principal(source=CredentialSource.CLUSTER_AUTH, universal=ALL_RIGHTS)

        with store.transaction() as tx:
            rights = evaluator.list_rights(tx, principal, OrganizationID("acme"))

        assert rights == kind_rights(EntityKind.ORGANIZATION)

    def test_anonymous_has_nothing(self, store, evaluator):
        with store.transaction() as tx:
            assert not evaluator.list_rights(tx, Principal.anonymous(), APP)


class TestRequire:
    def test_missing_rights_are_reported(self, store, evaluator):
        alice = seed_user(store, "alice")
        seed_entity(store, APP, alice, Rights.of(Right.APPLICATION_INFO))

        with store.transaction() as tx:
            with pytest.raises(PermissionDeniedError) as exc:
                evaluator.require(tx, token_principal(alice), APP, Right.APPLICATION_INFO, Right.APPLICATION_DELETE)

        assert exc.value.attributes["missing_rights"] == ["RIGHT_APPLICATION_DELETE"]

    def test_returns_effective_rights(self, store, evaluator):
        alice = seed_user(store, "alice")
        seed_entity(store, APP, alice)

        with store.transaction() as tx:
            have = evaluator.require(tx, token_principal(alice), APP, Right.APPLICATION_INFO)

        assert have == kind_rights(EntityKind.APPLICATION)

    def test_ignores_cached_membership_rights(self, store):
        evaluator = RightsEvaluator(MembershipGraph(TTLCache(ttl_seconds=60)))
        alice = seed_user(store, "alice")
        seed_entity(store, APP, alice)
        principal = token_principal(alice)

        with store.transaction() as tx:
            assert evaluator.list_rights(tx, principal, APP).includes(Right.APPLICATION_DELETE)
            tx.put_membership(alice, APP, Rights.of(Right.APPLICATION_INFO))

            with pytest.raises(PermissionDeniedError):
                evaluator.require(tx, principal, APP, Right.APPLICATION_DELETE)


class TestProperties:
    @settings(max_examples=50, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(application_rights, application_rights)
    def test_adding_membership_rights_never_removes_effective_rights(self, evaluator, base, extra):
        store = MemoryStore()
        alice = seed_user(store, "alice")
        seed_entity(store, APP, seed_user(store, "owner"))
        principal = token_principal(alice)

        grant(store, alice, APP, base)
        with store.transaction() as tx:
            before = evaluator.list_rights(tx, principal, APP)
        grant(store, alice, APP, base | extra)
        with store.transaction() as tx:
            after = evaluator.list_rights(tx, principal, APP)

        assert after.includes_all(before)

    @settings(max_examples=50, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(application_rights, application_rights)
    def test_effective_rights_never_exceed_scope(self, evaluator, member, scope):
        store = MemoryStore()
        alice = seed_user(store, "alice")
        seed_entity(store, APP, alice, member or Rights.of(Right.APPLICATION_INFO))

        with store.transaction() as tx:
            rights = evaluator.list_rights(tx, token_principal(alice, scope), APP)

        assert scope.includes_all(rights)
