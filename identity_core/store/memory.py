"""
In-memory store.

Transactions hold one process-wide re-entrant lock from begin to commit,
so they execute one at a time and are trivially serializable. A snapshot
taken at begin is restored if the transaction body raises.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from loguru import logger

from identity_core.domain.identifiers import AccountID, EntityID, EntityKind, UserID
from identity_core.domain.models import AccessToken, APIKey, UserAccount
from identity_core.domain.rights import Rights
from identity_core.runtime.errors import ConflictError


@dataclass
class _State:
    users: dict[UserID, UserAccount] = field(default_factory=dict)
    entities: set[EntityID] = field(default_factory=set)
    access_tokens: dict[str, AccessToken] = field(default_factory=dict)
    api_keys: dict[str, APIKey] = field(default_factory=dict)
    memberships: dict[tuple[AccountID, EntityID], Rights] = field(default_factory=dict)

    def copy(self) -> _State:
        # Values are immutable, so copying the containers is enough.
        return _State(
            dict(self.users),
            set(self.entities),
            dict(self.access_tokens),
            dict(self.api_keys),
            dict(self.memberships),
        )


class MemoryTransaction:
    def __init__(self, state: _State):
        self._state = state

    def get_user(self, ids: UserID) -> UserAccount | None:
        return self._state.users.get(ids)

    def put_user(self, user: UserAccount) -> None:
        self._state.users[user.ids] = user
        self._state.entities.add(user.ids)

    def entity_exists(self, ids: EntityID) -> bool:
        return ids in self._state.entities

    def create_entity(self, ids: EntityID) -> None:
        if ids in self._state.entities:
            raise ConflictError(f"{ids} already exists", entity=str(ids))
        self._state.entities.add(ids)

    def delete_entity(self, ids: EntityID) -> None:
        self._state.entities.discard(ids)

    def get_access_token(self, token: str) -> AccessToken | None:
        return self._state.access_tokens.get(token)

    def put_access_token(self, token: AccessToken) -> None:
        self._state.access_tokens[token.token] = token

    def get_api_key(self, key_id: str) -> APIKey | None:
        return self._state.api_keys.get(key_id)

    def find_api_key_by_name(self, entity: EntityID, name: str) -> APIKey | None:
        for key in self._state.api_keys.values():
            if key.entity == entity and key.name == name:
                return key
        return None

    def list_api_keys(self, entity: EntityID, limit: int = 0, page: int = 1) -> tuple[list[APIKey], int]:
        keys = sorted(
            (k for k in self._state.api_keys.values() if k.entity == entity),
            key=lambda k: (k.created_at, k.id),
        )
        return _paginate(keys, limit, page), len(keys)

    def put_api_key(self, key: APIKey) -> None:
        self._state.api_keys[key.id] = key

    def delete_api_key(self, key_id: str) -> None:
        self._state.api_keys.pop(key_id, None)

    def delete_entity_api_keys(self, entity: EntityID) -> None:
        for key_id in [k.id for k in self._state.api_keys.values() if k.entity == entity]:
            del self._state.api_keys[key_id]

    def get_membership(self, account: AccountID, entity: EntityID) -> Rights | None:
        return self._state.memberships.get((account, entity))

    def put_membership(self, account: AccountID, entity: EntityID, rights: Rights) -> None:
        self._state.memberships[(account, entity)] = rights

    def delete_membership(self, account: AccountID, entity: EntityID) -> None:
        self._state.memberships.pop((account, entity), None)

    def list_members(self, entity: EntityID) -> list[tuple[AccountID, Rights]]:
        return sorted(
            ((a, r) for (a, e), r in self._state.memberships.items() if e == entity),
            key=lambda item: str(item[0]),
        )

    def list_memberships(self, account: AccountID, kind: EntityKind | None = None) -> list[tuple[EntityID, Rights]]:
        return sorted(
            (
                (e, r)
                for (a, e), r in self._state.memberships.items()
                if a == account and (kind is None or e.kind is kind)
            ),
            key=lambda item: str(item[0]),
        )

    def delete_entity_members(self, entity: EntityID) -> None:
        for pair in [p for p in self._state.memberships if p[1] == entity]:
            del self._state.memberships[pair]

    def delete_account_members(self, account: AccountID) -> None:
        for pair in [p for p in self._state.memberships if p[0] == account]:
            del self._state.memberships[pair]


def _paginate(items: list, limit: int, page: int) -> list:
    if limit <= 0:
        return items
    start = (max(page, 1) - 1) * limit
    return items[start : start + limit]


class MemoryStore:
    """Dict-backed store for tests and single-process deployments."""

    def __init__(self):
        self._state = _State()
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[MemoryTransaction]:
        with self._lock:
            snapshot = self._state.copy()
            try:
                yield MemoryTransaction(self._state)
            except BaseException:
                self._state = snapshot
                logger.debug("Memory transaction rolled back")
                raise
