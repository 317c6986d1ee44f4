"""
Authentication domain models.

This module defines the request-time identity:
- CredentialSource: How the caller authenticated
- Restriction: Account-state limits applied to a user's rights
- Principal: Authenticated identity with its granted and universal rights
- AuthContext: Request-scoped auth context
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from identity_core.domain.identifiers import EntityID, UserID
from identity_core.domain.rights import NO_RIGHTS, Rights


class CredentialSource(str, Enum):
    """How a principal was established."""

    API_KEY = "api-key"
    ACCESS_TOKEN = "access-token"
    CLUSTER_AUTH = "cluster-auth"
    ANONYMOUS = "anonymous"


class Restriction(str, Enum):
    """Limits derived from user account state."""

    PENDING_APPROVAL = "pending_approval"
    PENDING_VALIDATION = "pending_validation"
    SUSPENDED = "suspended"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Principal:
    """Authenticated identity for a single request."""

    source: CredentialSource
    subject: EntityID | None = None
    granted: Rights = NO_RIGHTS
    universal: Rights = NO_RIGHTS
    key_id: str | None = None
    client_id: str | None = None
    restrictions: frozenset[Restriction] = field(default_factory=frozenset)

    @classmethod
    def anonymous(cls) -> Principal:
        return cls(source=CredentialSource.ANONYMOUS)

    @property
    def is_authenticated(self) -> bool:
        return self.source is not CredentialSource.ANONYMOUS

    @property
    def user(self) -> UserID | None:
        """The user acting, for access tokens and user API keys."""
        if isinstance(self.subject, UserID):
            return self.subject
        return None

    def describe(self) -> str:
        if self.source is CredentialSource.ANONYMOUS:
            return "anonymous"
        if self.source is CredentialSource.API_KEY:
            return f"{self.subject}/api-key:{self.key_id}"
        if self.subject is None:
            return self.source.value
        return str(self.subject)


@dataclass
class AuthContext:
    """Request-scoped authentication context.

    Attached to request.state.auth by the auth middleware.
    """

    principal: Principal
    authenticated_at: datetime
    request_id: str

    @property
    def is_authenticated(self) -> bool:
        return self.principal.is_authenticated
