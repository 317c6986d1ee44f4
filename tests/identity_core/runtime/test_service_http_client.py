"""Unit tests for ServiceHttpClient."""

import httpx
import pytest

from identity_core.runtime.context import RunContext
from identity_core.runtime.errors import RetryableError, TerminalError
from identity_core.runtime.http_client import ServiceHttpClient
from identity_core.runtime.retry import RetryPolicy

CONTEXT = RunContext(request_id="req-1")
NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0.0, jitter=False)


def client_for(handler) -> ServiceHttpClient:
    return ServiceHttpClient("http://notifier/", retry_policy=NO_WAIT, transport=httpx.MockTransport(handler))


class TestServiceHttpClient:
    @pytest.mark.asyncio
    async def test_injects_headers(self):
        def handler(request):
            assert request.headers["X-Request-Id"] == "req-1"
            return httpx.Response(200, json={"ok": True})

        async with client_for(handler) as client:
            response = await client.post_json("/notify", CONTEXT, {"a": 1})

        assert response.json() == {"ok": True}

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        statuses = iter([503, 200])

        def handler(request):
            return httpx.Response(next(statuses))

        async with client_for(handler) as client:
            response = await client.request("GET", "", CONTEXT)

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_client_errors_are_terminal(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(422, text="bad payload")

        async with client_for(handler) as client:
            with pytest.raises(TerminalError):
                await client.post_json("/notify", CONTEXT, {})

        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_connection_errors_are_retryable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with client_for(handler) as client:
            with pytest.raises(RetryableError):
                await client.post_json("/notify", CONTEXT, {})
