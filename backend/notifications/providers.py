"""Delivery provider clients.

The engine never talks SMTP or carrier protocols itself: email and SMS are
handed to external delivery APIs. Each provider takes the node's idempotency
key and forwards it as an ``Idempotency-Key`` header so a resend after a
crash is deduplicated on the provider side too.

Error mapping:
    timeout / connection error / 429 / 5xx  -> TransientExecutionError
    any other 4xx / malformed response       -> PermanentExecutionError
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from core.exceptions import PermanentExecutionError, TransientExecutionError

logger = logging.getLogger(__name__)


# ─── Data Types ────────────────────────────────────────────────

@dataclass
class RenderedEmail:
    """Email content after template rendering."""
    subject: str
    body: str
    from_address: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class RenderedSms:
    """SMS content after template rendering."""
    body: str
    sender_id: Optional[str] = None


# ─── Base Providers ────────────────────────────────────────────

class EmailProvider(ABC):
    """Abstract email delivery collaborator."""

    @abstractmethod
    async def send_email(self, idempotency_key: str, to: str, rendered: RenderedEmail) -> str:
        """Send one email and return the provider's message id."""
        ...


class SmsProvider(ABC):
    """Abstract SMS delivery collaborator."""

    @abstractmethod
    async def send_sms(self, idempotency_key: str, to: str, rendered: RenderedSms) -> str:
        """Send one SMS and return the provider's message id."""
        ...


# ─── HTTP transport ────────────────────────────────────────────

class _HttpDeliveryClient:
    """Shared POST-and-map-errors logic for HTTP delivery APIs."""

    def __init__(
        self,
        url: str,
        api_key: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self, idempotency_key: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Idempotency-Key": idempotency_key,
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def post(self, idempotency_key: str, payload: dict[str, Any]) -> str:
        if not self.url:
            raise PermanentExecutionError("Delivery provider URL is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    self.url,
                    json=payload,
                    headers=self._headers(idempotency_key),
                )
        except httpx.TimeoutException as e:
            raise TransientExecutionError(f"Provider timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientExecutionError(f"Provider unreachable: {e}") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientExecutionError(
                f"Provider returned HTTP {resp.status_code}",
                {"status_code": resp.status_code},
            )
        if resp.status_code >= 400:
            raise PermanentExecutionError(
                f"Provider rejected request: HTTP {resp.status_code}: {resp.text[:200]}",
                {"status_code": resp.status_code},
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise PermanentExecutionError("Provider returned a non-JSON response") from e

        message_id = (data.get("id") or data.get("message_id")) if isinstance(data, dict) else None
        if not message_id:
            raise PermanentExecutionError("Provider response has no message id")

        logger.info(f"Provider accepted message {message_id} ({idempotency_key[:12]})")
        return str(message_id)


class HttpEmailProvider(EmailProvider):
    """Email delivery through a JSON HTTP API."""

    def __init__(
        self,
        url: str,
        api_key: str = "",
        from_address: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.from_address = from_address
        self._client = _HttpDeliveryClient(url, api_key, timeout, transport)

    async def send_email(self, idempotency_key: str, to: str, rendered: RenderedEmail) -> str:
        return await self._client.post(idempotency_key, {
            "from": rendered.from_address or self.from_address,
            "to": to,
            "subject": rendered.subject,
            "body": rendered.body,
            "metadata": rendered.metadata,
        })


class HttpSmsProvider(SmsProvider):
    """SMS delivery through a JSON HTTP API."""

    def __init__(
        self,
        url: str,
        api_key: str = "",
        sender_id: str = "",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.sender_id = sender_id
        self._client = _HttpDeliveryClient(url, api_key, timeout, transport)

    async def send_sms(self, idempotency_key: str, to: str, rendered: RenderedSms) -> str:
        return await self._client.post(idempotency_key, {
            "from": rendered.sender_id or self.sender_id,
            "to": to,
            "body": rendered.body,
        })


def build_providers(settings) -> tuple[EmailProvider, SmsProvider]:
    """Create HTTP providers from application settings."""
    email = HttpEmailProvider(
        url=settings.EMAIL_PROVIDER_URL,
        api_key=settings.EMAIL_PROVIDER_API_KEY,
        from_address=settings.EMAIL_FROM_ADDRESS,
        timeout=settings.EMAIL_TIMEOUT_SECONDS,
    )
    sms = HttpSmsProvider(
        url=settings.SMS_PROVIDER_URL,
        api_key=settings.SMS_PROVIDER_API_KEY,
        sender_id=settings.SMS_SENDER_ID,
        timeout=settings.SMS_TIMEOUT_SECONDS,
    )
    return email, sms
