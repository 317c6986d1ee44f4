"""
Request-scoped context for side effects that outlive the request.

RunContext carries the correlation ID and the acting principal into the
event dispatcher and the outbound HTTP client, after the store
transaction that produced the side effect has committed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from identity_core.domain.auth import AuthContext


class RunContext(BaseModel):
    """Correlation data propagated to sinks and outbound calls.

    Attributes:
        request_id: Unique identifier for request tracing.
        actor: Display form of the acting principal, if any.
    """

    request_id: str
    actor: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_auth(cls, auth: "AuthContext") -> "RunContext":
        return cls(request_id=auth.request_id, actor=auth.principal.describe())

    def get_headers(self) -> dict[str, str]:
        headers = {"X-Request-Id": self.request_id}
        if self.actor:
            headers["X-Actor"] = self.actor
        return headers
