"""
Access policy for credential and collaborator mutations.

Three rules:

- Exact-rights delegation: a caller changing a grant must hold every
  right being added and every right being removed. Deleting a grant
  outright only checks the (empty) added set, and a caller may always
  shrink a grant that is their own.
- Key issue: a new API key may not carry rights the caller lacks.
- Last owner: after the change, some user must still hold ``<KIND>_ALL``
  on the entity.

All checks run against state read inside the caller's transaction.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from identity_core.auth.membership import MembershipGraph
from identity_core.domain.identifiers import EntityID, EntityKind
from identity_core.domain.rights import Right, Rights, kind_rights
from identity_core.runtime.errors import (
    EntityNeedsCollaboratorError,
    InvalidArgumentError,
    PermissionDeniedError,
)
from identity_core.store.protocols import StoreTransaction


@dataclass(frozen=True)
class OperationRights:
    """Rights that gate each RPC family on one entity kind."""

    info: Right
    api_keys: Right | None
    collaborators: Right | None


OPERATION_RIGHTS: dict[EntityKind, OperationRights] = {
    EntityKind.APPLICATION: OperationRights(
        Right.APPLICATION_INFO,
        Right.APPLICATION_SETTINGS_API_KEYS,
        Right.APPLICATION_SETTINGS_COLLABORATORS,
    ),
    EntityKind.GATEWAY: OperationRights(
        Right.GATEWAY_INFO,
        Right.GATEWAY_SETTINGS_API_KEYS,
        Right.GATEWAY_SETTINGS_COLLABORATORS,
    ),
    EntityKind.ORGANIZATION: OperationRights(
        Right.ORGANIZATION_INFO,
        Right.ORGANIZATION_SETTINGS_API_KEYS,
        Right.ORGANIZATION_SETTINGS_MEMBERS,
    ),
    EntityKind.USER: OperationRights(Right.USER_INFO, Right.USER_SETTINGS_API_KEYS, None),
    EntityKind.CLIENT: OperationRights(Right.CLIENT_INFO, None, Right.CLIENT_SETTINGS_COLLABORATORS),
}


@dataclass(frozen=True)
class RightsChange:
    added: Rights
    removed: Rights

    @classmethod
    def between(cls, old: Rights, new: Rights) -> RightsChange:
        old_implied, new_implied = old.implied(), new.implied()
        return cls(added=new_implied.sub(old_implied), removed=old_implied.sub(new_implied))


def operation_rights(kind: EntityKind) -> OperationRights:
    try:
        return OPERATION_RIGHTS[kind]
    except KeyError:
        raise InvalidArgumentError(f"{kind.value} does not support this operation") from None


def check_requested_rights(kind: EntityKind, requested: Rights) -> None:
    """Reject rights that do not belong to ``kind``."""
    foreign = requested.sub(kind_rights(kind))
    if foreign:
        raise InvalidArgumentError(
            f"Rights not applicable to {kind.value}",
            rights=foreign.to_strings(),
        )


def check_delegation(caller_rights: Rights, old: Rights, new: Rights, *, is_self: bool = False) -> RightsChange:
    """Enforce the exact-rights rule for a change from ``old`` to ``new``.

    Args:
        caller_rights: The caller's effective rights on the entity.
        old: The grant's current rights (empty when creating).
        new: The requested rights (empty when deleting).
        is_self: The grant belongs to the caller. A pure reduction of
            one's own grant needs no further rights.

    Returns:
        The computed change.

    Raises:
        PermissionDeniedError: With ``missing_rights`` naming what the
            caller would have to hold.
    """
    change = RightsChange.between(old, new)
    if not new or (is_self and not change.added):
        to_check = change.added
    else:
        to_check = change.added.union(change.removed)

    missing = caller_rights.missing(to_check)
    if missing:
        raise PermissionDeniedError(
            "Cannot grant or revoke rights the caller does not hold",
            missing_rights=missing.to_strings(),
        )
    return change


def check_issue(caller_rights: Rights, requested: Rights) -> None:
    """A new API key may only carry rights the caller holds."""
    missing = caller_rights.missing(requested)
    if missing:
        raise PermissionDeniedError(
            "Cannot issue an API key with rights the caller does not hold",
            missing_rights=missing.to_strings(),
        )


def ensure_owner(tx: StoreTransaction, graph: MembershipGraph, entity: EntityID) -> None:
    """Re-check the post-image: some user must still own ``entity``.

    Raises:
        EntityNeedsCollaboratorError: No user holds ``<KIND>_ALL`` any more.
    """
    if entity.kind is EntityKind.USER:
        return
    if not graph.has_owner(tx, entity):
        logger.info(f"Rejected change leaving {entity} without an owner")
        raise EntityNeedsCollaboratorError(
            f"{entity.kind.value} needs at least one collaborator with all rights",
            entity=str(entity),
        )
