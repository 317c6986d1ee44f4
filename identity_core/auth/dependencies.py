"""
FastAPI dependencies for authentication.
"""

from __future__ import annotations

from fastapi import Depends, Request

from identity_core.domain.auth import AuthContext
from identity_core.runtime.errors import UnauthenticatedError


def get_auth_context(request: Request) -> AuthContext:
    """Get auth context from request state.

    Raises:
        UnauthenticatedError: The auth middleware did not run for this path.
    """
    auth = getattr(request.state, "auth", None)
    if auth is None:
        raise UnauthenticatedError("Not authenticated")
    return auth


def require_authenticated(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """Reject anonymous callers before the handler runs."""
    if not auth.is_authenticated:
        raise UnauthenticatedError("Authentication required")
    return auth
