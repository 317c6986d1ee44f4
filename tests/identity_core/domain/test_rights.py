"""Unit tests for the rights algebra."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from identity_core.domain.identifiers import EntityKind
from identity_core.domain.rights import (
    ALL_RIGHTS,
    LIMITED_USER_RIGHTS,
    NO_RIGHTS,
    ORGANIZATION_DELEGATION_RIGHTS,
    Right,
    Rights,
    admin_rights,
    kind_all,
    kind_rights,
)
from identity_core.runtime.errors import InvalidArgumentError

rights_sets = st.sets(st.sampled_from(list(Right))).map(Rights)


class TestRight:
    """Tests for individual rights."""

    def test_parse_accepts_prefixed_and_bare_names(self):
        assert Right.parse("RIGHT_APPLICATION_INFO") is Right.APPLICATION_INFO
        assert Right.parse("application_info") is Right.APPLICATION_INFO

    def test_parse_unknown_right_is_invalid_argument(self):
        with pytest.raises(InvalidArgumentError) as exc:
            Right.parse("RIGHT_APPLICATION_TELEPORT")

        assert exc.value.attributes["right"] == "RIGHT_APPLICATION_TELEPORT"

    def test_kind_and_all(self):
        assert Right.GATEWAY_LINK.kind is EntityKind.GATEWAY
        assert Right.CLIENT_ALL.is_all
        assert not Right.CLIENT_INFO.is_all
        assert Right.RIGHT_INVALID.kind is None


class TestRightsSet:
    """Tests for set construction and canonical form."""

    def test_invalid_right_is_dropped(self):
        assert Rights.of(Right.RIGHT_INVALID, Right.USER_INFO).raw() == frozenset({Right.USER_INFO})

    def test_strings_are_parsed(self):
        assert Rights(["RIGHT_GATEWAY_INFO"]) == Rights.of(Right.GATEWAY_INFO)

    def test_iteration_follows_declaration_order(self):
        rights = Rights.of(Right.APPLICATION_LINK, Right.APPLICATION_INFO, Right.USER_INFO)

        assert rights.to_list() == [Right.USER_INFO, Right.APPLICATION_INFO, Right.APPLICATION_LINK]

    def test_all_implies_every_right_of_kind(self):
        implied = Rights.of(Right.GATEWAY_ALL).implied()

        assert implied.raw() == kind_rights(EntityKind.GATEWAY).raw()
        assert not implied.for_kind(EntityKind.APPLICATION)

    def test_equality_uses_implied_form(self):
        assert Rights.of(Right.CLIENT_ALL) == kind_rights(EntityKind.CLIENT)
        assert Rights.of(Right.CLIENT_INFO) != Rights.of(Right.CLIENT_ALL)

    def test_missing_lists_what_is_absent(self):
        held = Rights.of(Right.APPLICATION_INFO)

        missing = held.missing([Right.APPLICATION_INFO, Right.APPLICATION_LINK])

        assert missing == Rights.of(Right.APPLICATION_LINK)

    def test_end_device_rights_are_application_rights(self):
        assert kind_rights(EntityKind.END_DEVICE) == kind_rights(EntityKind.APPLICATION)
        assert kind_all(EntityKind.END_DEVICE) is Right.APPLICATION_ALL

    def test_constants(self):
        assert not NO_RIGHTS
        assert ALL_RIGHTS.includes(Right.ORGANIZATION_ALL)
        assert LIMITED_USER_RIGHTS.kinds() == {EntityKind.USER}
        assert not ORGANIZATION_DELEGATION_RIGHTS.includes(Right.ORGANIZATION_SETTINGS_MEMBERS)
        assert ORGANIZATION_DELEGATION_RIGHTS.includes(Right.ORGANIZATION_INFO)


class TestAdminRights:
    def test_full_admin_rights(self):
        assert admin_rights(True) == ALL_RIGHTS

    def test_restricted_admin_rights_withhold_sensitive_rights(self):
        rights = admin_rights(False)

        assert rights.includes(Right.APPLICATION_INFO)
        assert not rights.includes(Right.APPLICATION_ALL)
        assert not rights.includes(Right.APPLICATION_SETTINGS_API_KEYS)
        assert not rights.includes(Right.GATEWAY_READ_SECRETS)
        assert not rights.includes(Right.APPLICATION_DEVICES_READ_KEYS)


class TestAlgebraProperties:
    """Set-algebra laws over arbitrary rights sets."""

    @given(rights_sets, rights_sets)
    def test_union_is_commutative(self, a, b):
        assert a.union(b).raw() == b.union(a).raw()

    @given(rights_sets, rights_sets)
    def test_intersection_is_commutative(self, a, b):
        assert (a & b).raw() == (b & a).raw()

    @given(rights_sets)
    def test_implied_is_idempotent(self, a):
        assert a.implied().implied().raw() == a.implied().raw()

    @given(rights_sets)
    def test_implied_is_a_superset(self, a):
        assert a.raw() <= a.implied().raw()

    @given(rights_sets, rights_sets)
    def test_includes_all_matches_missing(self, a, b):
        assert a.includes_all(b) == (not b.implied().sub(a.implied()))

    @given(rights_sets, rights_sets)
    def test_union_includes_both_operands(self, a, b):
        union = a | b

        assert union.includes_all(a)
        assert union.includes_all(b)

    @given(rights_sets, rights_sets)
    def test_sub_removes_everything_of_other(self, a, b):
        assert not (a - b).raw() & b.raw()
