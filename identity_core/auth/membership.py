"""
Membership graph.

Only direct edges ``account -> entity`` are stored. Rights that flow
through an organization are computed at query time: an organization
passes its rights on an entity to those of its users who hold every
right in ORGANIZATION_DELEGATION_RIGHTS on the organization. Because
organizations cannot be members of organizations or users, the graph is
never deeper than user -> organization -> entity.
"""

from __future__ import annotations

from loguru import logger

from identity_core.auth.cache import TTLCache
from identity_core.domain.identifiers import (
    AccountID,
    EntityID,
    EntityKind,
    OrganizationID,
    UserID,
    is_account,
)
from identity_core.domain.models import Collaborator, MembershipChain
from identity_core.domain.rights import NO_RIGHTS, ORGANIZATION_DELEGATION_RIGHTS, Rights, kind_all, kind_rights
from identity_core.runtime.errors import InvalidArgumentError, NotFoundError
from identity_core.store.protocols import StoreTransaction


class MembershipGraph:
    """Queries and mutations over direct memberships.

    All methods take the caller's open transaction so reads that feed a
    policy decision share its isolation with the mutation that follows.
    """

    def __init__(self, cache: TTLCache[Rights] | None = None):
        self.cache = cache or TTLCache(ttl_seconds=0)

    def invalidate(self) -> None:
        """Drop cached rights. Call after a membership change has committed."""
        self.cache.clear()

    # Direct edges

    def get_member(self, tx: StoreTransaction, account: AccountID, entity: EntityID) -> Rights:
        return tx.get_membership(account, entity) or NO_RIGHTS

    def set_member(self, tx: StoreTransaction, account: AccountID, entity: EntityID, rights: Rights) -> None:
        """Upsert a membership; an empty rights set deletes it.

        Raises:
            InvalidArgumentError: Nested organization, membership of a user
                or device, or rights outside the entity's kind.
            NotFoundError: The account does not exist.
        """
        self.validate_edge(account, entity)
        if not rights:
            self.delete_member(tx, account, entity)
            return
        foreign = rights.sub(kind_rights(entity.kind))
        if foreign:
            raise InvalidArgumentError(
                f"Rights not applicable to {entity.kind.value}",
                rights=foreign.to_strings(),
            )
        if not tx.entity_exists(account):
            raise NotFoundError(f"{account} not found", account=str(account))
        tx.put_membership(account, entity, rights)
        logger.debug(f"Membership {account} -> {entity} set to {rights!r}")

    def delete_member(self, tx: StoreTransaction, account: AccountID, entity: EntityID) -> None:
        tx.delete_membership(account, entity)

    def find_members(self, tx: StoreTransaction, entity: EntityID) -> list[Collaborator]:
        return [Collaborator(account, rights) for account, rights in tx.list_members(entity)]

    def delete_entity_members(self, tx: StoreTransaction, entity: EntityID) -> None:
        tx.delete_entity_members(entity)

    def delete_account_members(self, tx: StoreTransaction, account: AccountID) -> None:
        tx.delete_account_members(account)

    @staticmethod
    def validate_edge(account: AccountID, entity: EntityID) -> None:
        if not is_account(account):
            raise InvalidArgumentError(f"{account.kind.value} cannot be a member", account=str(account))
        if entity.kind in (EntityKind.USER, EntityKind.END_DEVICE):
            raise InvalidArgumentError(f"{entity.kind.value} entities have no members", entity=str(entity))
        if entity.kind is EntityKind.ORGANIZATION and isinstance(account, OrganizationID):
            raise InvalidArgumentError("Organizations cannot be members of organizations", entity=str(entity))

    # Transitive queries

    def _delegating_organizations(self, tx: StoreTransaction, user: UserID) -> list[tuple[OrganizationID, Rights]]:
        return [
            (org, rights)
            for org, rights in tx.list_memberships(user, EntityKind.ORGANIZATION)
            if rights.includes_all(ORGANIZATION_DELEGATION_RIGHTS)
        ]

    def find_memberships(
        self,
        tx: StoreTransaction,
        account: AccountID,
        kind: EntityKind,
        include_indirect: bool = False,
    ) -> list[EntityID]:
        """Entities of ``kind`` the account is a member of."""
        found = [entity for entity, _ in tx.list_memberships(account, kind)]
        if include_indirect and isinstance(account, UserID) and kind is not EntityKind.ORGANIZATION:
            for org, _ in self._delegating_organizations(tx, account):
                found.extend(entity for entity, _ in tx.list_memberships(org, kind))
        return sorted(set(found), key=str)

    def membership_chains(
        self,
        tx: StoreTransaction,
        account: AccountID,
        kind: EntityKind,
        *entities: EntityID,
    ) -> list[MembershipChain]:
        """Every path that gives ``account`` rights on the given entities.

        Direct memberships produce a chain without an organization; each
        delegating organization with a membership on the entity produces
        one more.
        """
        targets = [e for e in entities if e.kind is kind]
        organizations: list[tuple[OrganizationID, Rights]] = []
        if isinstance(account, UserID) and kind is not EntityKind.ORGANIZATION:
            organizations = self._delegating_organizations(tx, account)

        chains: list[MembershipChain] = []
        for entity in targets:
            direct = tx.get_membership(account, entity)
            if direct:
                chains.append(MembershipChain(account, entity, direct))
            for org, _ in organizations:
                via = tx.get_membership(org, entity)
                if via:
                    chains.append(MembershipChain(account, entity, via, org))
        return chains

    def rights_on(
        self, tx: StoreTransaction, account: AccountID, entity: EntityID, use_cache: bool = True
    ) -> Rights:
        """Union of every chain from ``account`` to ``entity``, implied.

        With ``use_cache=False`` the rights are read from ``tx`` alone and
        the cache is neither consulted nor filled.
        """
        if not use_cache:
            return self._chain_rights(tx, account, entity)
        key = (account, entity)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        rights = self._chain_rights(tx, account, entity)
        self.cache.put(key, rights)
        return rights

    def _chain_rights(self, tx: StoreTransaction, account: AccountID, entity: EntityID) -> Rights:
        chains = self.membership_chains(tx, account, entity.kind, entity)
        return NO_RIGHTS.union(*(c.rights for c in chains)).implied()

    # Ownership

    def owners(self, tx: StoreTransaction, entity: EntityID) -> list[UserID]:
        """Users holding ``<KIND>_ALL`` on the entity, directly or through an organization."""
        needed = kind_all(entity.kind)
        owners: set[UserID] = set()
        for member, rights in tx.list_members(entity):
            if not rights.includes(needed):
                continue
            if isinstance(member, UserID):
                owners.add(member)
            elif entity.kind is not EntityKind.ORGANIZATION:
                owners.update(
                    user
                    for user, user_rights in tx.list_members(member)
                    if isinstance(user, UserID) and user_rights.includes_all(ORGANIZATION_DELEGATION_RIGHTS)
                )
        return sorted(owners, key=str)

    def has_owner(self, tx: StoreTransaction, entity: EntityID) -> bool:
        return bool(self.owners(tx, entity))
