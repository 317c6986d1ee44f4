"""
Cluster peer authentication.

Peers in the same deployment present a short-lived HS256 token in the
``X-Cluster-Auth`` header. A valid token is the only way to obtain
universal rights without an administrator account.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TypedDict

import jwt

from identity_core.config import settings
from identity_core.runtime.errors import TokenExpiredError, UnauthenticatedError

CLUSTER_AUTH_HEADER = "X-Cluster-Auth"


class ClusterClaims(TypedDict):
    iss: str
    sub: str  # peer name
    iat: int
    exp: int


class ClusterAuthService:
    """Issue and verify cluster peer tokens."""

    ALGORITHM = "HS256"

    def __init__(self, secret: str | None = None, issuer: str | None = None, ttl_seconds: int = 300):
        self.secret = secret if secret is not None else settings.CLUSTER_AUTH_SECRET
        self.issuer = issuer or settings.CLUSTER_AUTH_ISSUER
        self.ttl = ttl_seconds

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    def issue(self, peer: str) -> str:
        """Create a token for ``peer``; used by peers and in tests."""
        if not self.enabled:
            raise ValueError("CLUSTER_AUTH_SECRET must be configured")
        now = datetime.now(timezone.utc)
        payload = {
            "iss": self.issuer,
            "sub": peer,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.ttl)).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=self.ALGORITHM)

    def verify(self, token: str) -> ClusterClaims:
        """Decode a peer token.

        Raises:
            UnauthenticatedError: Cluster auth is disabled or the token is invalid.
            TokenExpiredError: The token has expired.
        """
        if not self.enabled:
            raise UnauthenticatedError("Cluster authentication is not enabled")
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.ALGORITHM],
                issuer=self.issuer,
                options={"require": ["exp", "iss", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Cluster token expired") from None
        except jwt.InvalidTokenError as e:
            raise UnauthenticatedError("Invalid cluster token", message_debug=str(e)) from None
        return ClusterClaims(iss=payload["iss"], sub=payload["sub"], iat=payload.get("iat", 0), exp=payload["exp"])
