"""Tests for the HTTP delivery providers, using httpx.MockTransport."""

import json

import httpx
import pytest

from core.exceptions import PermanentExecutionError, TransientExecutionError
from notifications.providers import HttpEmailProvider, HttpSmsProvider, RenderedEmail, RenderedSms

pytestmark = pytest.mark.unit

URL = "https://mail.example.test/v1/messages"


def email_provider(handler) -> HttpEmailProvider:
    return HttpEmailProvider(
        URL, api_key="k-123", from_address="noreply@example.com", transport=httpx.MockTransport(handler)
    )


async def send(provider: HttpEmailProvider) -> str:
    return await provider.send_email("idem-1", "ada@example.com", RenderedEmail(subject="Hi", body="Hello"))


class TestHttpEmailProvider:
    @pytest.mark.asyncio
    async def test_success_returns_message_id(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "msg-42"})

        assert await send(email_provider(handler)) == "msg-42"
        assert seen["headers"]["Idempotency-Key"] == "idem-1"
        assert seen["headers"]["Authorization"] == "Bearer k-123"
        assert seen["body"]["to"] == "ada@example.com"
        assert seen["body"]["from"] == "noreply@example.com"

    @pytest.mark.asyncio
    async def test_message_id_key_is_accepted(self):
        provider = email_provider(lambda request: httpx.Response(202, json={"message_id": 7}))
        assert await send(provider) == "7"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_retryable_status_is_transient(self, status):
        provider = email_provider(lambda request: httpx.Response(status, json={}))
        with pytest.raises(TransientExecutionError) as exc:
            await send(provider)
        assert exc.value.details["status_code"] == status

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 422])
    async def test_client_error_is_permanent(self, status):
        provider = email_provider(lambda request: httpx.Response(status, text="bad recipient"))
        with pytest.raises(PermanentExecutionError, match=f"HTTP {status}"):
            await send(provider)

    @pytest.mark.asyncio
    async def test_missing_message_id_is_permanent(self):
        provider = email_provider(lambda request: httpx.Response(200, json={"ok": True}))
        with pytest.raises(PermanentExecutionError, match="no message id"):
            await send(provider)

    @pytest.mark.asyncio
    async def test_non_json_response_is_permanent(self):
        provider = email_provider(lambda request: httpx.Response(200, text="<html>ok</html>"))
        with pytest.raises(PermanentExecutionError, match="non-JSON"):
            await send(provider)

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientExecutionError, match="unreachable"):
            await send(email_provider(handler))

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(TransientExecutionError, match="timed out"):
            await send(email_provider(handler))

    @pytest.mark.asyncio
    async def test_unconfigured_url_is_permanent(self):
        provider = HttpEmailProvider("")
        with pytest.raises(PermanentExecutionError, match="not configured"):
            await send(provider)


class TestHttpSmsProvider:
    @pytest.mark.asyncio
    async def test_sends_sender_id_and_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["key"] = request.headers["Idempotency-Key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "sm-1"})

        provider = HttpSmsProvider(
            "https://sms.example.test/send", sender_id="ACME", transport=httpx.MockTransport(handler)
        )
        message_id = await provider.send_sms("idem-2", "+15550100199", RenderedSms(body="Code 1234"))

        assert message_id == "sm-1"
        assert seen["key"] == "idem-2"
        assert seen["body"] == {"from": "ACME", "to": "+15550100199", "body": "Code 1234"}
