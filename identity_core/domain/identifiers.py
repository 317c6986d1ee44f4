"""
Typed identifiers for entities and accounts.

EntityID is a tagged union over the six entity kinds; AccountID is the
subset (users and organizations) that can be a member of something.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Union

from identity_core.runtime.errors import InvalidArgumentError


class EntityKind(str, Enum):
    USER = "user"
    ORGANIZATION = "organization"
    APPLICATION = "application"
    GATEWAY = "gateway"
    CLIENT = "client"
    END_DEVICE = "end_device"

    @property
    def plural(self) -> str:
        return f"{self.value}s"


ID_PATTERN = re.compile(r"^[a-z0-9](?:[-]?[a-z0-9]){2,}$")
ID_MAX_LENGTH = 36


@dataclass(frozen=True)
class UserID:
    user_id: str
    kind = EntityKind.USER

    @property
    def id(self) -> str:
        return self.user_id

    def __str__(self) -> str:
        return f"user:{self.user_id}"


@dataclass(frozen=True)
class OrganizationID:
    organization_id: str
    kind = EntityKind.ORGANIZATION

    @property
    def id(self) -> str:
        return self.organization_id

    def __str__(self) -> str:
        return f"organization:{self.organization_id}"


@dataclass(frozen=True)
class ApplicationID:
    application_id: str
    kind = EntityKind.APPLICATION

    @property
    def id(self) -> str:
        return self.application_id

    def __str__(self) -> str:
        return f"application:{self.application_id}"


@dataclass(frozen=True)
class GatewayID:
    gateway_id: str
    kind = EntityKind.GATEWAY

    @property
    def id(self) -> str:
        return self.gateway_id

    def __str__(self) -> str:
        return f"gateway:{self.gateway_id}"


@dataclass(frozen=True)
class ClientID:
    client_id: str
    kind = EntityKind.CLIENT

    @property
    def id(self) -> str:
        return self.client_id

    def __str__(self) -> str:
        return f"client:{self.client_id}"


@dataclass(frozen=True)
class EndDeviceID:
    application_ids: ApplicationID
    device_id: str
    kind = EntityKind.END_DEVICE

    @property
    def id(self) -> str:
        return f"{self.application_ids.application_id}.{self.device_id}"

    def __str__(self) -> str:
        return f"end_device:{self.id}"


AccountID = Union[UserID, OrganizationID]
EntityID = Union[UserID, OrganizationID, ApplicationID, GatewayID, ClientID, EndDeviceID]

ACCOUNT_KINDS = (EntityKind.USER, EntityKind.ORGANIZATION)

_CONSTRUCTORS = {
    EntityKind.USER: UserID,
    EntityKind.ORGANIZATION: OrganizationID,
    EntityKind.APPLICATION: ApplicationID,
    EntityKind.GATEWAY: GatewayID,
    EntityKind.CLIENT: ClientID,
}


def parse_entity_id(kind: EntityKind | str, value: str) -> EntityID:
    """Build an EntityID from its kind and string form.

    End devices use ``<application_id>.<device_id>``.

    Raises:
        InvalidArgumentError: Unknown kind or malformed device identifier.
    """
    try:
        kind = EntityKind(kind)
    except ValueError:
        raise InvalidArgumentError(f"Unknown entity kind: {kind}", kind=str(kind)) from None
    if kind is EntityKind.END_DEVICE:
        app_id, sep, dev_id = value.partition(".")
        if not sep or not app_id or not dev_id:
            raise InvalidArgumentError("End device identifiers take the form <application>.<device>")
        return EndDeviceID(ApplicationID(app_id), dev_id)
    return _CONSTRUCTORS[kind](value)


def parse_account_id(kind: EntityKind | str, value: str) -> AccountID:
    """Build an AccountID; only users and organizations qualify."""
    ids = parse_entity_id(kind, value)
    if ids.kind not in ACCOUNT_KINDS:
        raise InvalidArgumentError(f"{ids.kind.value} cannot be a collaborator", kind=ids.kind.value)
    return ids


def rights_target(ids: EntityID) -> EntityID:
    """The entity whose memberships govern ``ids``; devices defer to their application."""
    if isinstance(ids, EndDeviceID):
        return ids.application_ids
    return ids


def is_account(ids: EntityID) -> bool:
    return ids.kind in ACCOUNT_KINDS


def validate_id(value: str, blocklist: Iterable[str] = ()) -> None:
    """Check an identifier chosen at registration time.

    Raises:
        InvalidArgumentError: Pattern violation, too long, or blocklisted.
    """
    if len(value) > ID_MAX_LENGTH or not ID_PATTERN.match(value):
        raise InvalidArgumentError(f"Invalid identifier: {value!r}", id=value)
    if value in set(blocklist):
        raise InvalidArgumentError(f"Identifier {value!r} is not allowed", id=value, reason="blocklisted")
