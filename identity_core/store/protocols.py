"""
Store protocols.

The authorization core talks to persistence only through these interfaces.
Every read that feeds a policy decision and the mutation that follows it
run inside one ``Store.transaction()``; implementations must give those
transactions serializable semantics.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Protocol, runtime_checkable

from identity_core.domain.identifiers import AccountID, EntityID, EntityKind, UserID
from identity_core.domain.models import AccessToken, APIKey, UserAccount
from identity_core.domain.rights import Rights


@runtime_checkable
class StoreTransaction(Protocol):
    """Operations available inside a transaction."""

    # Users and entities

    def get_user(self, ids: UserID) -> UserAccount | None:
        ...

    def put_user(self, user: UserAccount) -> None:
        ...

    def entity_exists(self, ids: EntityID) -> bool:
        ...

    def create_entity(self, ids: EntityID) -> None:
        """Register an entity. Raises ConflictError if it already exists."""
        ...

    def delete_entity(self, ids: EntityID) -> None:
        ...

    # Access tokens

    def get_access_token(self, token: str) -> AccessToken | None:
        ...

    def put_access_token(self, token: AccessToken) -> None:
        ...

    # API keys

    def get_api_key(self, key_id: str) -> APIKey | None:
        ...

    def find_api_key_by_name(self, entity: EntityID, name: str) -> APIKey | None:
        ...

    def list_api_keys(self, entity: EntityID, limit: int = 0, page: int = 1) -> tuple[list[APIKey], int]:
        """Return one page of keys ordered by creation time, and the total count."""
        ...

    def put_api_key(self, key: APIKey) -> None:
        ...

    def delete_api_key(self, key_id: str) -> None:
        ...

    def delete_entity_api_keys(self, entity: EntityID) -> None:
        ...

    # Memberships

    def get_membership(self, account: AccountID, entity: EntityID) -> Rights | None:
        ...

    def put_membership(self, account: AccountID, entity: EntityID, rights: Rights) -> None:
        ...

    def delete_membership(self, account: AccountID, entity: EntityID) -> None:
        ...

    def list_members(self, entity: EntityID) -> list[tuple[AccountID, Rights]]:
        ...

    def list_memberships(self, account: AccountID, kind: EntityKind | None = None) -> list[tuple[EntityID, Rights]]:
        ...

    def delete_entity_members(self, entity: EntityID) -> None:
        ...

    def delete_account_members(self, account: AccountID) -> None:
        ...


@runtime_checkable
class Store(Protocol):
    """Shared store handle."""

    def transaction(self) -> AbstractContextManager[StoreTransaction]:
        """Open a transaction that commits on clean exit and rolls back on error."""
        ...
