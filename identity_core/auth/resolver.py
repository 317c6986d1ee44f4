"""
Principal resolver.

Turns the ``Authorization`` header (and, for cluster peers, the
``X-Cluster-Auth`` header) into a Principal. Resolution only reads from
the store; it never mutates state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from loguru import logger

from identity_core.auth import credentials
from identity_core.auth.cluster import ClusterAuthService
from identity_core.config import settings
from identity_core.domain.auth import CredentialSource, Principal, Restriction
from identity_core.domain.identifiers import UserID
from identity_core.domain.models import UserAccount, UserState, utcnow
from identity_core.domain.rights import ALL_RIGHTS, NO_RIGHTS, Rights, admin_rights
from identity_core.runtime.errors import (
    CredentialExpiredError,
    MalformedCredentialError,
    TokenExpiredError,
    UnauthenticatedError,
)
from identity_core.store.protocols import Store, StoreTransaction

_STATE_RESTRICTIONS = {
    UserState.REQUESTED: Restriction.PENDING_APPROVAL,
    UserState.REJECTED: Restriction.REJECTED,
    UserState.FLAGGED: Restriction.SUSPENDED,
    UserState.SUSPENDED: Restriction.SUSPENDED,
}


def parse_authorization(header: str | None) -> str | None:
    """Extract the bearer from an Authorization header value.

    Returns:
        The bearer string, or None when no credential was sent.

    Raises:
        MalformedCredentialError: Unsupported scheme or empty bearer.
    """
    if header is None or not header.strip():
        return None
    scheme, _, value = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        raise MalformedCredentialError("Unsupported authorization scheme", scheme=scheme)
    value = value.strip()
    if not value:
        raise MalformedCredentialError("Empty bearer credential")
    return value


class PrincipalResolver:
    """Resolve request credentials into a Principal."""

    def __init__(
        self,
        store: Store,
        cluster: ClusterAuthService | None = None,
        admin_rights_all: bool | None = None,
        require_contact_validation: bool | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.cluster = cluster or ClusterAuthService()
        self.admin_rights_all = settings.ADMIN_RIGHTS_ALL if admin_rights_all is None else admin_rights_all
        self.require_contact_validation = (
            settings.REQUIRE_CONTACT_VALIDATION if require_contact_validation is None else require_contact_validation
        )
        self.clock = clock

    def resolve(self, authorization: str | None, cluster_auth: str | None = None) -> Principal:
        """Resolve a principal from request headers.

        Args:
            authorization: Value of the Authorization header, if any.
            cluster_auth: Value of the X-Cluster-Auth header, if any.

        Returns:
            The principal; anonymous when no credential was presented.

        Raises:
            MalformedCredentialError: The bearer does not decode.
            UnauthenticatedError: Unknown credential or failed verification.
            TokenExpiredError: The access token has expired.
            CredentialExpiredError: The API key has expired.
        """
        if cluster_auth:
            claims = self.cluster.verify(cluster_auth)
            logger.debug(f"Cluster peer {claims['sub']} authenticated")
            return Principal(source=CredentialSource.CLUSTER_AUTH, universal=ALL_RIGHTS)

        bearer = parse_authorization(authorization)
        if bearer is None:
            return Principal.anonymous()

        credential = credentials.decode(bearer)
        with self.store.transaction() as tx:
            if isinstance(credential, credentials.APIKeyCredential):
                return self._resolve_api_key(tx, credential)
            return self._resolve_access_token(tx, credential)

    def _resolve_api_key(self, tx: StoreTransaction, credential: credentials.APIKeyCredential) -> Principal:
        key = tx.get_api_key(credential.key_id)
        if key is None or key.entity.kind is not credential.kind:
            raise UnauthenticatedError("API key not found")
        if not credentials.verify_secret(credential.secret, key.secret_hash):
            logger.info(f"API key {key.id} presented with an invalid secret")
            raise UnauthenticatedError("API key not found")
        if key.is_expired(self.clock()):
            raise CredentialExpiredError("API key expired", key_id=key.id)

        universal = NO_RIGHTS
        restrictions: frozenset[Restriction] = frozenset()
        if isinstance(key.entity, UserID):
            user = tx.get_user(key.entity)
            if user is None:
                raise UnauthenticatedError("API key owner not found")
            restrictions = self._restrictions(user)
            universal = self._universal(user, restrictions, key.rights)

        return Principal(
            source=CredentialSource.API_KEY,
            subject=key.entity,
            granted=key.rights,
            universal=universal,
            key_id=key.id,
            restrictions=restrictions,
        )

    def _resolve_access_token(self, tx: StoreTransaction, credential: credentials.AccessTokenCredential) -> Principal:
        token = tx.get_access_token(credential.token)
        if token is None:
            raise UnauthenticatedError("Access token not found")
        if token.is_expired(self.clock()):
            raise TokenExpiredError("Access token expired")
        user = tx.get_user(token.user_ids)
        if user is None:
            raise UnauthenticatedError("Access token owner not found")

        restrictions = self._restrictions(user)
        return Principal(
            source=CredentialSource.ACCESS_TOKEN,
            subject=user.ids,
            granted=token.scope,
            universal=self._universal(user, restrictions, token.scope),
            client_id=token.client_id,
            restrictions=restrictions,
        )

    def _restrictions(self, user: UserAccount) -> frozenset[Restriction]:
        found = set()
        if user.state in _STATE_RESTRICTIONS:
            found.add(_STATE_RESTRICTIONS[user.state])
        if self.require_contact_validation and user.primary_email_validated_at is None:
            found.add(Restriction.PENDING_VALIDATION)
        return frozenset(found)

    def _universal(self, user: UserAccount, restrictions: frozenset[Restriction], granted: Rights) -> Rights:
        # Admin rights still pass through the credential's own ceiling.
        if not user.admin or restrictions:
            return NO_RIGHTS
        return admin_rights(self.admin_rights_all).intersect(granted.implied())
