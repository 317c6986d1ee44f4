"""
FastAPI auth middleware.

Resolves the caller once per request from the ``Authorization`` and
``X-Cluster-Auth`` headers and attaches an AuthContext to request.state.
Requests without credentials proceed as anonymous; whether that is
enough is decided per operation.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Callable

from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from identity_core.auth.cluster import CLUSTER_AUTH_HEADER
from identity_core.auth.resolver import PrincipalResolver
from identity_core.domain.auth import AuthContext
from identity_core.runtime.errors import ServiceError

# Endpoints that skip credential resolution entirely
PUBLIC_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc", "/metrics"})


class AuthMiddleware(BaseHTTPMiddleware):
    """Attach the resolved principal to every request.

    A credential that fails to resolve ends the request with the error
    envelope (401 or 400); it never degrades to anonymous.
    """

    def __init__(self, app, resolver_provider: Callable[[], PrincipalResolver]):
        super().__init__(app)
        self._resolver_provider = resolver_provider

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id", str(uuid.uuid4()))
        request.state.request_id = request_id

        path = request.url.path.rstrip("/") or "/"
        if path in PUBLIC_PATHS:
            return await call_next(request)

        try:
            principal = self._resolver_provider().resolve(
                request.headers.get("Authorization"),
                request.headers.get(CLUSTER_AUTH_HEADER),
            )
        except ServiceError as e:
            logger.warning(f"[{request_id}] Credential rejected for {path}: {e.code}")
            return JSONResponse(status_code=e.http_status, content=e.to_dict(), headers={"X-Request-Id": request_id})

        request.state.auth = AuthContext(
            principal=principal,
            authenticated_at=datetime.now(timezone.utc),
            request_id=request_id,
        )
        logger.debug(f"[{request_id}] {request.method} {path} as {principal.describe()}")

        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
