"""
Persisted records handled by the authorization core.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum

from identity_core.domain.identifiers import AccountID, EntityID, OrganizationID, UserID
from identity_core.domain.rights import NO_RIGHTS, Rights


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserState(str, Enum):
    APPROVED = "approved"
    REQUESTED = "requested"
    REJECTED = "rejected"
    FLAGGED = "flagged"
    SUSPENDED = "suspended"


@dataclass(frozen=True)
class UserAccount:
    """The slice of a user record the authorization core reads."""

    ids: UserID
    admin: bool = False
    state: UserState = UserState.APPROVED
    primary_email_validated_at: datetime | None = None


@dataclass(frozen=True)
class APIKey:
    """Stored API key. ``secret_hash`` never leaves the core."""

    id: str
    entity: EntityID
    secret_hash: str
    name: str = ""
    rights: Rights = NO_RIGHTS
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def updated(self, **changes) -> APIKey:
        return replace(self, updated_at=utcnow(), **changes)


@dataclass(frozen=True)
class IssuedAPIKey:
    """Result of CreateAPIKey: the only time the bearer string is visible."""

    api_key: APIKey
    key: str


@dataclass(frozen=True)
class AccessToken:
    token: str
    user_ids: UserID
    client_id: str
    scope: Rights
    created_at: datetime
    expires_in: timedelta
    redirect_uri: str = ""

    def is_expired(self, now: datetime) -> bool:
        return now > self.created_at + self.expires_in


@dataclass(frozen=True)
class Collaborator:
    account: AccountID
    rights: Rights


@dataclass(frozen=True)
class MembershipChain:
    """One path from an account to an entity.

    ``organization`` is set when the rights arrive through an organization
    the user belongs to.
    """

    account: AccountID
    entity: EntityID
    rights: Rights
    organization: OrganizationID | None = None
