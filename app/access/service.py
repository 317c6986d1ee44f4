"""
Access service: the request shell around the authorization core.

Every mutating RPC follows the same pipeline: check the caller is
authenticated, open a store transaction, evaluate rights and apply the
policy against state read in that transaction, mutate, re-check the
last-owner rule on the post-image, commit, and only then hand events and
notifications to the dispatcher.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, Iterator, TypeVar

from loguru import logger

from identity_core.auth import credentials
from identity_core.auth.evaluator import RightsEvaluator
from identity_core.auth.membership import MembershipGraph
from identity_core.auth.policy import (
    check_delegation,
    check_issue,
    check_requested_rights,
    ensure_owner,
    operation_rights,
)
from identity_core.auth.resolver import PrincipalResolver
from identity_core.config import settings
from identity_core.domain.auth import AuthContext, CredentialSource, Principal
from identity_core.domain.identifiers import (
    AccountID,
    EntityID,
    EntityKind,
    GatewayID,
    OrganizationID,
    validate_id,
)
from identity_core.domain.models import APIKey, Collaborator, IssuedAPIKey, utcnow
from identity_core.domain.rights import NO_RIGHTS, Right, Rights, kind_all, kind_rights
from identity_core.events.dispatcher import Dispatcher
from identity_core.events.models import (
    Event,
    EventName,
    NotificationReceiver,
    NotificationRequest,
    NotificationType,
)
from identity_core.runtime.context import RunContext
from identity_core.runtime.errors import (
    ConflictError,
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    UnauthenticatedError,
)
from identity_core.store.protocols import Store, StoreTransaction

T = TypeVar("T")

API_KEY_FIELDS = frozenset({"name", "rights", "expires_at"})
LEGACY_API_KEY_MASK = frozenset({"name", "rights"})

_CREATE_RIGHTS: dict[tuple[EntityKind, EntityKind], Right] = {
    (EntityKind.USER, EntityKind.APPLICATION): Right.USER_APPLICATIONS_CREATE,
    (EntityKind.USER, EntityKind.GATEWAY): Right.USER_GATEWAYS_CREATE,
    (EntityKind.USER, EntityKind.ORGANIZATION): Right.USER_ORGANIZATIONS_CREATE,
    (EntityKind.USER, EntityKind.CLIENT): Right.USER_CLIENTS_CREATE,
    (EntityKind.ORGANIZATION, EntityKind.APPLICATION): Right.ORGANIZATION_APPLICATIONS_CREATE,
    (EntityKind.ORGANIZATION, EntityKind.GATEWAY): Right.ORGANIZATION_GATEWAYS_CREATE,
    (EntityKind.ORGANIZATION, EntityKind.CLIENT): Right.ORGANIZATION_CLIENTS_CREATE,
}

_PURGE_RIGHTS: dict[EntityKind, Right] = {
    EntityKind.APPLICATION: Right.APPLICATION_PURGE,
    EntityKind.GATEWAY: Right.GATEWAY_PURGE,
    EntityKind.ORGANIZATION: Right.ORGANIZATION_PURGE,
    EntityKind.CLIENT: Right.CLIENT_PURGE,
}


def paginate(items: list[T], limit: int, page: int) -> list[T]:
    if limit <= 0:
        return items
    start = (page - 1) * limit
    return items[start : start + limit]


class AccessService:
    """Rights, API key and collaborator RPCs for every entity kind."""

    def __init__(
        self,
        store: Store,
        dispatcher: Dispatcher,
        graph: MembershipGraph | None = None,
        resolver: PrincipalResolver | None = None,
        allow_legacy_delete: bool | None = None,
        id_blocklist: Iterable[str] | None = None,
        max_page_limit: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.graph = graph or MembershipGraph()
        self.evaluator = RightsEvaluator(self.graph)
        self.resolver = resolver or PrincipalResolver(store, clock=clock)
        self.allow_legacy_delete = (
            settings.ALLOW_LEGACY_API_KEY_DELETE if allow_legacy_delete is None else allow_legacy_delete
        )
        self.id_blocklist = frozenset(settings.ID_BLOCKLIST if id_blocklist is None else id_blocklist)
        self.max_page_limit = max_page_limit or settings.MAX_PAGE_LIMIT
        self.clock = clock

    # Helpers

    def resolve(self, authorization: str | None, cluster_auth: str | None = None) -> Principal:
        return self.resolver.resolve(authorization, cluster_auth)

    @staticmethod
    def _authenticated(auth: AuthContext) -> Principal:
        if not auth.principal.is_authenticated:
            raise UnauthenticatedError("Authentication required")
        return auth.principal

    def _page(self, limit: int, page: int) -> tuple[int, int]:
        if limit < 0 or page < 1:
            raise InvalidArgumentError("limit must be >= 0 and page >= 1", limit=limit, page=page)
        return min(limit, self.max_page_limit) if limit else 0, page

    def _check_expiry(self, expires_at: datetime | None) -> None:
        if expires_at is not None and expires_at <= self.clock():
            raise InvalidArgumentError("expires_at must be in the future")

    @contextmanager
    def _membership_change(self) -> Iterator[StoreTransaction]:
        """Transaction for membership mutations; cached rights are dropped once it commits."""
        with self.store.transaction() as tx:
            yield tx
        self.graph.invalidate()

    async def _emit(
        self,
        auth: AuthContext,
        events: list[Event],
        notifications: list[NotificationRequest] | None = None,
    ) -> None:
        await self.dispatcher.dispatch(RunContext.from_auth(auth), events, notifications)

    # Rights

    async def list_rights(self, auth: AuthContext, entity: EntityID) -> Rights:
        """Effective rights of the caller; anonymous callers get none."""
        with self.store.transaction() as tx:
            return self.evaluator.list_rights(tx, auth.principal, entity)

    async def assert_gateway_rights(self, auth: AuthContext, gateways: list[GatewayID], required: Rights) -> None:
        """Require ``required`` on every gateway in the batch.

        Raises:
            FailedPreconditionError: ``required`` contains non-gateway rights.
            PermissionDeniedError: A gateway lacks a right.
        """
        principal = self._authenticated(auth)
        foreign = required.sub(kind_rights(EntityKind.GATEWAY))
        if foreign:
            raise FailedPreconditionError("Only gateway rights can be asserted", rights=foreign.to_strings())
        with self.store.transaction() as tx:
            for gateway in gateways:
                try:
                    self.evaluator.require(tx, principal, gateway, *required)
                except PermissionDeniedError as e:
                    e.attributes["gateway_id"] = gateway.gateway_id
                    raise

    # Entity registration

    async def register_entity(self, auth: AuthContext, entity: EntityID, owner: AccountID | None = None) -> None:
        """Record a newly created entity and make ``owner`` its first collaborator.

        Args:
            auth: Request auth context.
            entity: The new application, gateway, organization or client.
            owner: User or organization receiving ``<KIND>_ALL``; defaults
                to the calling user.
        """
        principal = self._authenticated(auth)
        if entity.kind not in (EntityKind.APPLICATION, EntityKind.GATEWAY, EntityKind.ORGANIZATION, EntityKind.CLIENT):
            raise InvalidArgumentError(f"{entity.kind.value} entities cannot be registered here")
        validate_id(entity.id, self.id_blocklist)
        owner = owner or principal.user
        if owner is None:
            raise InvalidArgumentError("An owner is required")
        self.graph.validate_edge(owner, entity)

        with self._membership_change() as tx:
            self.evaluator.require(tx, principal, owner, _CREATE_RIGHTS[(owner.kind, entity.kind)])
            tx.create_entity(entity)
            self.graph.set_member(tx, owner, entity, Rights.of(kind_all(entity.kind)))
            ensure_owner(tx, self.graph, entity)

        logger.info(f"Registered {entity} owned by {owner}")
        await self._emit(auth, [Event.build(EventName.CREATE, entity, principal, auth.request_id, owner=str(owner))])

    async def purge_entity(self, auth: AuthContext, entity: EntityID) -> None:
        """Delete the entity with every API key and membership held on (or by) it.

        Raises:
            EntityNeedsCollaboratorError: The entity is an organization and
                some application, gateway or client would be left without
                an owner.
        """
        principal = self._authenticated(auth)
        if entity.kind not in _PURGE_RIGHTS:
            raise InvalidArgumentError(f"{entity.kind.value} entities cannot be purged here")
        with self._membership_change() as tx:
            self.evaluator.require(tx, principal, entity, _PURGE_RIGHTS[entity.kind])
            if not tx.entity_exists(entity):
                raise NotFoundError(f"{entity} not found")
            member_of: list[EntityID] = []
            if isinstance(entity, OrganizationID):
                member_of = [e for e, _ in tx.list_memberships(entity)]
            tx.delete_entity_api_keys(entity)
            self.graph.delete_entity_members(tx, entity)
            if member_of:
                self.graph.delete_account_members(tx, entity)
            tx.delete_entity(entity)
            for other in member_of:
                ensure_owner(tx, self.graph, other)

        logger.info(f"Purged {entity} by {principal.describe()}")
        await self._emit(auth, [Event.build(EventName.PURGE, entity, principal, auth.request_id)])

    # API keys

    async def create_api_key(
        self,
        auth: AuthContext,
        entity: EntityID,
        name: str,
        rights: Rights,
        expires_at: datetime | None = None,
    ) -> IssuedAPIKey:
        """Issue a key; the returned bearer is never shown again."""
        principal = self._authenticated(auth)
        gate = operation_rights(entity.kind).api_keys
        if gate is None:
            raise InvalidArgumentError(f"{entity.kind.value} entities have no API keys")
        if not rights:
            raise InvalidArgumentError("An API key needs at least one right")
        check_requested_rights(entity.kind, rights)
        self._check_expiry(expires_at)

        credential = credentials.generate_api_key(entity.kind)
        with self.store.transaction() as tx:
            caller_rights = self.evaluator.require(tx, principal, entity, gate)
            if not tx.entity_exists(entity):
                raise NotFoundError(f"{entity} not found")
            check_issue(caller_rights, rights)
            if name and tx.find_api_key_by_name(entity, name):
                raise ConflictError(f"An API key named {name!r} already exists", name=name)
            key = APIKey(
                id=credential.key_id,
                entity=entity,
                secret_hash=credentials.hash_secret(credential.secret),
                name=name,
                rights=rights,
                expires_at=expires_at,
            )
            tx.put_api_key(key)

        logger.info(f"API key {key.id} created on {entity} by {principal.describe()}")
        await self._emit(
            auth,
            [Event.build(EventName.API_KEY_CREATE, entity, principal, auth.request_id, **_key_data(key))],
            [
                NotificationRequest.build(
                    NotificationType.API_KEY_CREATED,
                    entity,
                    principal,
                    [NotificationReceiver.ADMINISTRATIVE_CONTACT, NotificationReceiver.TECHNICAL_CONTACT],
                    auth.request_id,
                    **_key_data(key),
                )
            ],
        )
        return IssuedAPIKey(api_key=key, key=credential.encode())

    async def list_api_keys(
        self, auth: AuthContext, entity: EntityID, limit: int = 0, page: int = 1
    ) -> tuple[list[APIKey], int]:
        principal = self._authenticated(auth)
        gate = operation_rights(entity.kind).api_keys
        if gate is None:
            raise InvalidArgumentError(f"{entity.kind.value} entities have no API keys")
        limit, page = self._page(limit, page)
        with self.store.transaction() as tx:
            self.evaluator.require(tx, principal, entity, gate)
            return tx.list_api_keys(entity, limit, page)

    async def get_api_key(self, auth: AuthContext, entity: EntityID, key_id: str) -> APIKey:
        principal = self._authenticated(auth)
        gate = operation_rights(entity.kind).api_keys
        if gate is None:
            raise InvalidArgumentError(f"{entity.kind.value} entities have no API keys")
        with self.store.transaction() as tx:
            self.evaluator.require(tx, principal, entity, gate)
            key = tx.get_api_key(key_id)
            if key is None or key.entity != entity:
                raise NotFoundError("API key not found", key_id=key_id)
            return key

    async def update_api_key(
        self,
        auth: AuthContext,
        entity: EntityID,
        key_id: str,
        name: str | None = None,
        rights: Rights | None = None,
        expires_at: datetime | None = None,
        field_mask: Iterable[str] | None = None,
    ) -> APIKey | None:
        """Update the fields named in ``field_mask``.

        Without a field mask, ``name`` and ``rights`` are updated. Setting
        empty rights deletes the key when legacy deletion is allowed.

        Returns:
            The updated key, or None when the key was deleted.
        """
        principal = self._authenticated(auth)
        gate = operation_rights(entity.kind).api_keys
        if gate is None:
            raise InvalidArgumentError(f"{entity.kind.value} entities have no API keys")
        mask = frozenset(field_mask or ())
        if not mask:
            mask = LEGACY_API_KEY_MASK
        unknown = mask - API_KEY_FIELDS
        if unknown:
            raise InvalidArgumentError("Invalid field mask", paths=sorted(unknown))
        new_rights = rights or NO_RIGHTS
        if "rights" in mask:
            check_requested_rights(entity.kind, new_rights)
        if "expires_at" in mask:
            self._check_expiry(expires_at)

        deleted = False
        with self.store.transaction() as tx:
            caller_rights = self.evaluator.require(tx, principal, entity, gate)
            key = tx.get_api_key(key_id)
            if key is None or key.entity != entity:
                raise NotFoundError("API key not found", key_id=key_id)

            changes: dict = {}
            if "rights" in mask:
                is_self = principal.source is CredentialSource.API_KEY and principal.key_id == key.id
                check_delegation(caller_rights, key.rights, new_rights, is_self=is_self)
                if not new_rights:
                    if not self.allow_legacy_delete:
                        raise InvalidArgumentError("Empty rights are not allowed, use DeleteAPIKey")
                    logger.warning(f"API key {key.id} deleted through UpdateAPIKey with empty rights (deprecated)")
                    tx.delete_api_key(key.id)
                    deleted = True
                else:
                    changes["rights"] = new_rights
            if not deleted:
                if "name" in mask:
                    new_name = name or ""
                    if new_name and new_name != key.name and tx.find_api_key_by_name(entity, new_name):
                        raise ConflictError(f"An API key named {new_name!r} already exists", name=new_name)
                    changes["name"] = new_name
                if "expires_at" in mask:
                    changes["expires_at"] = expires_at
                key = key.updated(**changes)
                tx.put_api_key(key)

        if deleted:
            await self._emit(
                auth, [Event.build(EventName.API_KEY_DELETE, entity, principal, auth.request_id, key_id=key.id)]
            )
            return None

        await self._emit(
            auth,
            [Event.build(EventName.API_KEY_UPDATE, entity, principal, auth.request_id, **_key_data(key))],
            [
                NotificationRequest.build(
                    NotificationType.API_KEY_CHANGED,
                    entity,
                    principal,
                    [NotificationReceiver.ADMINISTRATIVE_CONTACT, NotificationReceiver.TECHNICAL_CONTACT],
                    auth.request_id,
                    **_key_data(key),
                )
            ],
        )
        return key

    async def delete_api_key(self, auth: AuthContext, entity: EntityID, key_id: str) -> None:
        principal = self._authenticated(auth)
        gate = operation_rights(entity.kind).api_keys
        if gate is None:
            raise InvalidArgumentError(f"{entity.kind.value} entities have no API keys")
        with self.store.transaction() as tx:
            caller_rights = self.evaluator.require(tx, principal, entity, gate)
            key = tx.get_api_key(key_id)
            if key is None or key.entity != entity:
                raise NotFoundError("API key not found", key_id=key_id)
            check_delegation(caller_rights, key.rights, NO_RIGHTS)
            tx.delete_api_key(key_id)

        logger.info(f"API key {key_id} deleted from {entity} by {principal.describe()}")
        await self._emit(
            auth, [Event.build(EventName.API_KEY_DELETE, entity, principal, auth.request_id, key_id=key_id)]
        )

    # Collaborators

    def _collaborators_gate(self, entity: EntityID) -> Right:
        gate = operation_rights(entity.kind).collaborators
        if gate is None:
            raise InvalidArgumentError(f"{entity.kind.value} entities have no collaborators")
        return gate

    async def get_collaborator(self, auth: AuthContext, entity: EntityID, account: AccountID) -> Collaborator:
        principal = self._authenticated(auth)
        gate = self._collaborators_gate(entity)
        with self.store.transaction() as tx:
            self.evaluator.require(tx, principal, entity, gate)
            rights = tx.get_membership(account, entity)
            if not rights:
                raise NotFoundError(f"{account} is not a collaborator", account=str(account))
            return Collaborator(account, rights)

    async def set_collaborator(self, auth: AuthContext, entity: EntityID, account: AccountID, rights: Rights) -> None:
        """Grant, change or (with empty rights) remove a collaborator."""
        principal = self._authenticated(auth)
        gate = self._collaborators_gate(entity)
        self.graph.validate_edge(account, entity)
        check_requested_rights(entity.kind, rights)

        with self._membership_change() as tx:
            caller_rights = self.evaluator.require(tx, principal, entity, gate)
            if not tx.entity_exists(entity):
                raise NotFoundError(f"{entity} not found")
            old = self.graph.get_member(tx, account, entity)
            if not old and not rights:
                return
            if isinstance(account, OrganizationID) and not old:
                self.evaluator.require(tx, principal, account, Right.ORGANIZATION_ADD_AS_COLLABORATOR)
            check_delegation(caller_rights, old, rights, is_self=account == principal.user)
            self.graph.set_member(tx, account, entity, rights)
            ensure_owner(tx, self.graph, entity)

        operation = EventName.COLLABORATOR_UPDATE if rights else EventName.COLLABORATOR_DELETE
        data = {"collaborator": str(account), "rights": rights.to_strings()}
        await self._emit(
            auth,
            [Event.build(operation, entity, principal, auth.request_id, **data)],
            [
                NotificationRequest.build(
                    NotificationType.COLLABORATOR_CHANGED,
                    entity,
                    principal,
                    [NotificationReceiver.ADMINISTRATIVE_CONTACT, NotificationReceiver.COLLABORATOR],
                    auth.request_id,
                    **data,
                )
            ],
        )

    async def list_collaborators(
        self, auth: AuthContext, entity: EntityID, limit: int = 0, page: int = 1
    ) -> tuple[list[Collaborator], int]:
        """List collaborators; rights are elided for callers who cannot manage them."""
        principal = self._authenticated(auth)
        gate = self._collaborators_gate(entity)
        limit, page = self._page(limit, page)
        with self.store.transaction() as tx:
            caller_rights = self.evaluator.require(tx, principal, entity, operation_rights(entity.kind).info)
            members = self.graph.find_members(tx, entity)
        if not caller_rights.includes(gate):
            members = [Collaborator(m.account, NO_RIGHTS) for m in members]
        return paginate(members, limit, page), len(members)

    async def delete_collaborator(self, auth: AuthContext, entity: EntityID, account: AccountID) -> None:
        principal = self._authenticated(auth)
        gate = self._collaborators_gate(entity)
        with self._membership_change() as tx:
            caller_rights = self.evaluator.require(tx, principal, entity, gate)
            old = self.graph.get_member(tx, account, entity)
            if not old:
                raise NotFoundError(f"{account} is not a collaborator", account=str(account))
            check_delegation(caller_rights, old, NO_RIGHTS)
            self.graph.delete_member(tx, account, entity)
            ensure_owner(tx, self.graph, entity)

        await self._emit(
            auth,
            [
                Event.build(
                    EventName.COLLABORATOR_DELETE, entity, principal, auth.request_id, collaborator=str(account)
                )
            ],
            [
                NotificationRequest.build(
                    NotificationType.COLLABORATOR_CHANGED,
                    entity,
                    principal,
                    [NotificationReceiver.ADMINISTRATIVE_CONTACT, NotificationReceiver.COLLABORATOR],
                    auth.request_id,
                    collaborator=str(account),
                    rights=[],
                )
            ],
        )


def _key_data(key: APIKey) -> dict:
    return {"key_id": key.id, "name": key.name, "rights": key.rights.to_strings()}
