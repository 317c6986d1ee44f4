"""
Auth module for the Identity Server.

Provides the credential codec, principal resolution, the membership
graph, rights evaluation and the access policy.
"""

from identity_core.auth.cluster import ClusterAuthService
from identity_core.auth.evaluator import RightsEvaluator
from identity_core.auth.membership import MembershipGraph
from identity_core.auth.resolver import PrincipalResolver

__all__ = [
    "ClusterAuthService",
    "MembershipGraph",
    "PrincipalResolver",
    "RightsEvaluator",
]
