"""
Rights algebra.

A Right is an atomic capability tied to one entity kind. Rights is an
immutable, deduplicated set of rights with the implication closure under
which ``<KIND>_ALL`` stands for every right of that kind. All operations
are pure and never touch storage.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Iterator

from identity_core.domain.identifiers import EntityKind
from identity_core.runtime.errors import InvalidArgumentError


class Right(str, Enum):
    """Every capability the Identity Server knows about."""

    RIGHT_INVALID = "RIGHT_INVALID"

    # Users
    USER_INFO = "RIGHT_USER_INFO"
    USER_SETTINGS_BASIC = "RIGHT_USER_SETTINGS_BASIC"
    USER_SETTINGS_API_KEYS = "RIGHT_USER_SETTINGS_API_KEYS"
    USER_DELETE = "RIGHT_USER_DELETE"
    USER_AUTHORIZED_CLIENTS = "RIGHT_USER_AUTHORIZED_CLIENTS"
    USER_APPLICATIONS_LIST = "RIGHT_USER_APPLICATIONS_LIST"
    USER_APPLICATIONS_CREATE = "RIGHT_USER_APPLICATIONS_CREATE"
    USER_GATEWAYS_LIST = "RIGHT_USER_GATEWAYS_LIST"
    USER_GATEWAYS_CREATE = "RIGHT_USER_GATEWAYS_CREATE"
    USER_CLIENTS_LIST = "RIGHT_USER_CLIENTS_LIST"
    USER_CLIENTS_CREATE = "RIGHT_USER_CLIENTS_CREATE"
    USER_ORGANIZATIONS_LIST = "RIGHT_USER_ORGANIZATIONS_LIST"
    USER_ORGANIZATIONS_CREATE = "RIGHT_USER_ORGANIZATIONS_CREATE"
    USER_NOTIFICATIONS_READ = "RIGHT_USER_NOTIFICATIONS_READ"
    USER_ALL = "RIGHT_USER_ALL"

    # Applications
    APPLICATION_INFO = "RIGHT_APPLICATION_INFO"
    APPLICATION_SETTINGS_BASIC = "RIGHT_APPLICATION_SETTINGS_BASIC"
    APPLICATION_SETTINGS_API_KEYS = "RIGHT_APPLICATION_SETTINGS_API_KEYS"
    APPLICATION_SETTINGS_COLLABORATORS = "RIGHT_APPLICATION_SETTINGS_COLLABORATORS"
    APPLICATION_SETTINGS_PACKAGES = "RIGHT_APPLICATION_SETTINGS_PACKAGES"
    APPLICATION_DELETE = "RIGHT_APPLICATION_DELETE"
    APPLICATION_PURGE = "RIGHT_APPLICATION_PURGE"
    APPLICATION_DEVICES_READ = "RIGHT_APPLICATION_DEVICES_READ"
    APPLICATION_DEVICES_WRITE = "RIGHT_APPLICATION_DEVICES_WRITE"
    APPLICATION_DEVICES_READ_KEYS = "RIGHT_APPLICATION_DEVICES_READ_KEYS"
    APPLICATION_DEVICES_WRITE_KEYS = "RIGHT_APPLICATION_DEVICES_WRITE_KEYS"
    APPLICATION_TRAFFIC_READ = "RIGHT_APPLICATION_TRAFFIC_READ"
    APPLICATION_TRAFFIC_UP_WRITE = "RIGHT_APPLICATION_TRAFFIC_UP_WRITE"
    APPLICATION_TRAFFIC_DOWN_WRITE = "RIGHT_APPLICATION_TRAFFIC_DOWN_WRITE"
    APPLICATION_LINK = "RIGHT_APPLICATION_LINK"
    APPLICATION_ALL = "RIGHT_APPLICATION_ALL"

    # Gateways
    GATEWAY_INFO = "RIGHT_GATEWAY_INFO"
    GATEWAY_SETTINGS_BASIC = "RIGHT_GATEWAY_SETTINGS_BASIC"
    GATEWAY_SETTINGS_API_KEYS = "RIGHT_GATEWAY_SETTINGS_API_KEYS"
    GATEWAY_SETTINGS_COLLABORATORS = "RIGHT_GATEWAY_SETTINGS_COLLABORATORS"
    GATEWAY_DELETE = "RIGHT_GATEWAY_DELETE"
    GATEWAY_PURGE = "RIGHT_GATEWAY_PURGE"
    GATEWAY_TRAFFIC_READ = "RIGHT_GATEWAY_TRAFFIC_READ"
    GATEWAY_TRAFFIC_DOWN_WRITE = "RIGHT_GATEWAY_TRAFFIC_DOWN_WRITE"
    GATEWAY_LINK = "RIGHT_GATEWAY_LINK"
    GATEWAY_STATUS_READ = "RIGHT_GATEWAY_STATUS_READ"
    GATEWAY_LOCATION_READ = "RIGHT_GATEWAY_LOCATION_READ"
    GATEWAY_WRITE_SECRETS = "RIGHT_GATEWAY_WRITE_SECRETS"
    GATEWAY_READ_SECRETS = "RIGHT_GATEWAY_READ_SECRETS"
    GATEWAY_ALL = "RIGHT_GATEWAY_ALL"

    # Organizations
    ORGANIZATION_INFO = "RIGHT_ORGANIZATION_INFO"
    ORGANIZATION_SETTINGS_BASIC = "RIGHT_ORGANIZATION_SETTINGS_BASIC"
    ORGANIZATION_SETTINGS_API_KEYS = "RIGHT_ORGANIZATION_SETTINGS_API_KEYS"
    ORGANIZATION_SETTINGS_MEMBERS = "RIGHT_ORGANIZATION_SETTINGS_MEMBERS"
    ORGANIZATION_DELETE = "RIGHT_ORGANIZATION_DELETE"
    ORGANIZATION_PURGE = "RIGHT_ORGANIZATION_PURGE"
    ORGANIZATION_APPLICATIONS_LIST = "RIGHT_ORGANIZATION_APPLICATIONS_LIST"
    ORGANIZATION_APPLICATIONS_CREATE = "RIGHT_ORGANIZATION_APPLICATIONS_CREATE"
    ORGANIZATION_GATEWAYS_LIST = "RIGHT_ORGANIZATION_GATEWAYS_LIST"
    ORGANIZATION_GATEWAYS_CREATE = "RIGHT_ORGANIZATION_GATEWAYS_CREATE"
    ORGANIZATION_CLIENTS_LIST = "RIGHT_ORGANIZATION_CLIENTS_LIST"
    ORGANIZATION_CLIENTS_CREATE = "RIGHT_ORGANIZATION_CLIENTS_CREATE"
    ORGANIZATION_ADD_AS_COLLABORATOR = "RIGHT_ORGANIZATION_ADD_AS_COLLABORATOR"
    ORGANIZATION_ALL = "RIGHT_ORGANIZATION_ALL"

    # OAuth clients
    CLIENT_INFO = "RIGHT_CLIENT_INFO"
    CLIENT_SETTINGS_BASIC = "RIGHT_CLIENT_SETTINGS_BASIC"
    CLIENT_SETTINGS_COLLABORATORS = "RIGHT_CLIENT_SETTINGS_COLLABORATORS"
    CLIENT_DELETE = "RIGHT_CLIENT_DELETE"
    CLIENT_PURGE = "RIGHT_CLIENT_PURGE"
    CLIENT_ALL = "RIGHT_CLIENT_ALL"

    @property
    def kind(self) -> EntityKind | None:
        """Entity kind this right belongs to, None for RIGHT_INVALID."""
        return _RIGHT_KIND.get(self)

    @property
    def is_all(self) -> bool:
        return self.name.endswith("_ALL")

    @classmethod
    def parse(cls, value: str | Right) -> Right:
        """Parse ``RIGHT_APPLICATION_INFO`` or ``APPLICATION_INFO``.

        Raises:
            InvalidArgumentError: If the value names no known right.
        """
        if isinstance(value, Right):
            return value
        name = value.upper()
        if name.startswith("RIGHT_") and name != "RIGHT_INVALID":
            name = name[len("RIGHT_"):]
        try:
            return cls[name]
        except KeyError:
            raise InvalidArgumentError(f"Unknown right: {value}", right=value) from None


_KIND_PREFIXES = {
    "USER_": EntityKind.USER,
    "APPLICATION_": EntityKind.APPLICATION,
    "GATEWAY_": EntityKind.GATEWAY,
    "ORGANIZATION_": EntityKind.ORGANIZATION,
    "CLIENT_": EntityKind.CLIENT,
}

_RIGHT_KIND: dict[Right, EntityKind] = {
    right: kind
    for right in Right
    for prefix, kind in _KIND_PREFIXES.items()
    if right.name.startswith(prefix)
}

_ORDER = {right: index for index, right in enumerate(Right)}

_KIND_ALL: dict[EntityKind, Right] = {
    EntityKind.USER: Right.USER_ALL,
    EntityKind.APPLICATION: Right.APPLICATION_ALL,
    EntityKind.GATEWAY: Right.GATEWAY_ALL,
    EntityKind.ORGANIZATION: Right.ORGANIZATION_ALL,
    EntityKind.CLIENT: Right.CLIENT_ALL,
}


class Rights:
    """Immutable canonical rights set.

    Equality and hashing compare implied forms, so ``{APPLICATION_ALL}``
    equals the set of every application right. Iteration yields rights in
    declaration order.
    """

    __slots__ = ("_rights",)

    def __init__(self, rights: Iterable[Right | str] = ()):
        parsed = (Right.parse(r) for r in rights)
        self._rights = frozenset(r for r in parsed if r is not Right.RIGHT_INVALID)

    @classmethod
    def of(cls, *rights: Right | str) -> Rights:
        return cls(rights)

    # Set operations

    def union(self, *others: Rights) -> Rights:
        merged = set(self._rights)
        for other in others:
            merged |= other._rights
        return Rights(merged)

    def intersect(self, other: Rights) -> Rights:
        return Rights(self._rights & other._rights)

    def sub(self, other: Rights) -> Rights:
        return Rights(self._rights - other._rights)

    __or__ = union
    __and__ = intersect
    __sub__ = sub

    def implied(self) -> Rights:
        """Return a copy closed under ``<KIND>_ALL`` implication."""
        expanded = set(self._rights)
        for kind, all_right in _KIND_ALL.items():
            if all_right in self._rights:
                expanded |= _KIND_RIGHTS[kind]
        return Rights(expanded)

    # Membership tests

    def includes(self, right: Right) -> bool:
        return right in self.implied()._rights

    def includes_all(self, other: Rights | Iterable[Right]) -> bool:
        """True when every right of ``other`` is held, implications included."""
        return not self.missing(other)

    def missing(self, other: Rights | Iterable[Right]) -> Rights:
        """Rights of ``other`` (implied) that this set does not imply."""
        needed = other if isinstance(other, Rights) else Rights(other)
        return needed.implied().sub(self.implied())

    # Projections

    def for_kind(self, kind: EntityKind) -> Rights:
        """Keep only the rights belonging to ``kind``."""
        return Rights(r for r in self._rights if _RIGHT_KIND.get(r) is kind)

    def kinds(self) -> set[EntityKind]:
        return {_RIGHT_KIND[r] for r in self._rights}

    def raw(self) -> frozenset[Right]:
        """The stored rights without implication."""
        return self._rights

    def to_list(self) -> list[Right]:
        return sorted(self._rights, key=_ORDER.__getitem__)

    def to_strings(self) -> list[str]:
        return [r.value for r in self.to_list()]

    # Dunder protocol

    def __iter__(self) -> Iterator[Right]:
        return iter(self.to_list())

    def __len__(self) -> int:
        return len(self._rights)

    def __bool__(self) -> bool:
        return bool(self._rights)

    def __contains__(self, right: object) -> bool:
        return right in self._rights

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Rights):
            return NotImplemented
        return self.implied()._rights == other.implied()._rights

    def __hash__(self) -> int:
        return hash(self.implied()._rights)

    def __repr__(self) -> str:
        return f"Rights({', '.join(r.name for r in self.to_list())})"


_KIND_RIGHTS: dict[EntityKind, frozenset[Right]] = {
    kind: frozenset(r for r, k in _RIGHT_KIND.items() if k is kind) for kind in _KIND_ALL
}

NO_RIGHTS = Rights()

ALL_RIGHTS = Rights(_RIGHT_KIND)


def kind_rights(kind: EntityKind) -> Rights:
    """Every right of ``kind``, ``<KIND>_ALL`` included.

    End devices carry application rights.
    """
    if kind is EntityKind.END_DEVICE:
        kind = EntityKind.APPLICATION
    return Rights(_KIND_RIGHTS[kind])


def kind_all(kind: EntityKind) -> Right:
    if kind is EntityKind.END_DEVICE:
        kind = EntityKind.APPLICATION
    return _KIND_ALL[kind]


# Organization rights a user must hold for the organization to pass its own
# rights on to them. Administrative rights over the organization itself are
# excluded so holding them is not required.
ORGANIZATION_DELEGATION_RIGHTS = Rights(_KIND_RIGHTS[EntityKind.ORGANIZATION]).sub(
    Rights.of(
        Right.ORGANIZATION_SETTINGS_BASIC,
        Right.ORGANIZATION_SETTINGS_API_KEYS,
        Right.ORGANIZATION_SETTINGS_MEMBERS,
        Right.ORGANIZATION_DELETE,
        Right.ORGANIZATION_PURGE,
        Right.ORGANIZATION_ALL,
    )
)

# What a restricted (pending, suspended, rejected) user keeps on their account.
LIMITED_USER_RIGHTS = Rights.of(Right.USER_INFO, Right.USER_SETTINGS_BASIC, Right.USER_DELETE)

# Withheld from admins unless ADMIN_RIGHTS_ALL is set.
_ADMIN_WITHHELD = Rights(
    [r for r in _RIGHT_KIND if r.is_all or r.name.endswith("_SETTINGS_API_KEYS")]
    + [
        Right.APPLICATION_DEVICES_READ_KEYS,
        Right.APPLICATION_DEVICES_WRITE_KEYS,
        Right.GATEWAY_READ_SECRETS,
        Right.GATEWAY_WRITE_SECRETS,
    ]
)


def admin_rights(include_all: bool) -> Rights:
    """Universal rights of an administrator."""
    if include_all:
        return ALL_RIGHTS
    return ALL_RIGHTS.sub(_ADMIN_WITHHELD)
