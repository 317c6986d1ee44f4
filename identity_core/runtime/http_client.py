"""
Shared async HTTP client for outbound calls (notification webhooks).

The client injects correlation headers from the RunContext and converts
transport failures into ServiceErrors so the retry decorator can act on
them.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from .context import RunContext
from .errors import ErrorCode, RetryableError, TerminalError
from .retry import RetryPolicy, with_retry


class ServiceHttpClient:
    """Pooled HTTP client with header injection and retry.

    Example:
        client = ServiceHttpClient("http://notifier:8080")
        async with client:
            await client.post_json("/notifications", context, {"type": "api_key_created"})
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ServiceHttpClient":
        await self._get_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _build_url(self, path: str) -> str:
        if not path:
            return self.base_url
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(self, method: str, path: str, context: RunContext, **kwargs: Any) -> httpx.Response:
        """Make an HTTP request, retrying transient failures.

        Args:
            method: HTTP method.
            path: Request path relative to base_url.
            context: RunContext for header injection and correlation.
            **kwargs: Additional arguments passed to httpx.

        Returns:
            The HTTP response.

        Raises:
            RetryableError: Transient failure after the retry budget is spent.
            TerminalError: The remote rejected the request.
        """
        headers = {**kwargs.pop("headers", {}), **context.get_headers()}
        url = self._build_url(path)

        @with_retry(self.retry_policy)
        async def attempt() -> httpx.Response:
            client = await self._get_client()
            try:
                response = await client.request(method, url, headers=headers, **kwargs)
            except httpx.TimeoutException as e:
                raise RetryableError(ErrorCode.INTERNAL, f"Request timed out after {self.timeout}s", cause=e)
            except httpx.TransportError as e:
                raise RetryableError(ErrorCode.INTERNAL, "Connection failed", message_debug=str(e), cause=e)

            if self.retry_policy.should_retry_status(response.status_code) or response.status_code >= 500:
                raise RetryableError(
                    ErrorCode.INTERNAL,
                    f"Remote returned {response.status_code}",
                    message_debug=response.text[:500] if response.text else None,
                )
            if response.status_code >= 400:
                raise TerminalError(
                    ErrorCode.INVALID_ARGUMENT,
                    f"Remote rejected request with status {response.status_code}",
                    message_debug=response.text[:500] if response.text else None,
                )
            return response

        response = await attempt()
        logger.debug(f"[{context.request_id}] {method} {url} -> {response.status_code}")
        return response

    async def post_json(self, path: str, context: RunContext, payload: dict[str, Any]) -> httpx.Response:
        return await self.request("POST", path, context, json=payload)
