"""
Rights evaluator.

Computes what a principal may do on an entity:

- universal rights (administrators, cluster peers) apply everywhere;
- an API key only acts on the entity it belongs to, up to its rights;
- an access token acts with its user's membership rights, narrowed to
  the token scope;
- restricted users keep only basic rights on their own account.
"""

from __future__ import annotations

from loguru import logger
from opentelemetry import metrics

from identity_core.auth.membership import MembershipGraph
from identity_core.domain.auth import CredentialSource, Principal
from identity_core.domain.identifiers import EntityID, rights_target
from identity_core.domain.rights import LIMITED_USER_RIGHTS, NO_RIGHTS, Right, Rights, kind_rights
from identity_core.runtime.errors import PermissionDeniedError
from identity_core.store.protocols import StoreTransaction

_meter = metrics.get_meter(__name__)
_rights_checks = _meter.create_counter(
    "is.rights.checks",
    description="Rights requirement checks by result",
)


class RightsEvaluator:
    def __init__(self, graph: MembershipGraph):
        self.graph = graph

    def list_rights(
        self, tx: StoreTransaction, principal: Principal, entity: EntityID, use_cache: bool = True
    ) -> Rights:
        """Effective rights of ``principal`` on ``entity``, implied.

        End devices are evaluated against their application. Membership
        rights may come from the graph cache unless ``use_cache`` is False.
        """
        target = rights_target(entity)
        available = kind_rights(target.kind)

        universal = principal.universal.implied().intersect(available)
        if universal.includes_all(available):
            return available

        rights = self._credential_rights(tx, principal, target, available, use_cache)
        return rights.union(universal).implied().intersect(available)

    def _credential_rights(
        self,
        tx: StoreTransaction,
        principal: Principal,
        target: EntityID,
        available: Rights,
        use_cache: bool,
    ) -> Rights:
        if principal.source is CredentialSource.API_KEY:
            if principal.subject != target:
                return NO_RIGHTS
            rights = principal.granted.implied().intersect(available)
        elif principal.source is CredentialSource.ACCESS_TOKEN:
            user = principal.user
            if user is None:
                return NO_RIGHTS
            if target == user:
                member_rights = Rights.of(Right.USER_ALL).implied()
            else:
                member_rights = self.graph.rights_on(tx, user, target, use_cache=use_cache)
            rights = principal.granted.implied().intersect(member_rights).intersect(available)
        else:
            return NO_RIGHTS

        if principal.restrictions:
            limit = LIMITED_USER_RIGHTS if target == principal.user else NO_RIGHTS
            rights = rights.intersect(limit)
        return rights

    def require(self, tx: StoreTransaction, principal: Principal, entity: EntityID, *needed: Right) -> Rights:
        """Assert that ``principal`` holds every right in ``needed`` on ``entity``.

        Rights are read from ``tx`` without the membership cache; the result
        feeds policy checks that must agree with the transaction.

        Returns:
            The principal's effective rights, for follow-up checks.

        Raises:
            PermissionDeniedError: With ``missing_rights`` listing what is absent.
        """
        have = self.list_rights(tx, principal, entity, use_cache=False)
        missing = have.missing(needed)
        if missing:
            _rights_checks.add(1, {"result": "denied", "kind": entity.kind.value})
            logger.info(f"{principal.describe()} denied on {entity}: missing {missing!r}")
            raise PermissionDeniedError(
                f"Insufficient rights on {entity.kind.value}",
                missing_rights=missing.to_strings(),
            )
        _rights_checks.add(1, {"result": "granted", "kind": entity.kind.value})
        return have
