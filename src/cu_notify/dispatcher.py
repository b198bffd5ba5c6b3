"""NotificationDispatcher: posts emails to the outbound relay.

`send` raises NotificationError; `dispatch_all` sends concurrently and only
logs failures, so it is safe to run after the response has been sent.
"""

import asyncio
import logging
from typing import Any

import httpx

from config.settings import settings
from src.cu_common.errors import NotificationError
from src.cu_notify.templates import EmailMessage

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(
        self,
        url: str | None = None,
        token: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = settings.EMAIL_DISPATCH_URL if url is None else url
        self._token = settings.EMAIL_DISPATCH_TOKEN if token is None else token
        self._timeout = (
            settings.EMAIL_DISPATCH_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        )
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def send(self, message: EmailMessage) -> dict[str, Any]:
        """Deliver one message. Returns the relay's delivery metadata."""
        if not message.to:
            raise NotificationError("missing recipient")
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            try:
                response = await client.post(
                    self._url, json=message.to_payload(), headers=self._headers()
                )
            except httpx.TimeoutException:
                raise NotificationError("relay timed out") from None
            except httpx.RequestError as exc:
                raise NotificationError(f"relay unreachable: {exc}") from exc

        if response.status_code >= 400:
            detail = response.text[:200] or response.reason_phrase
            raise NotificationError(detail, status_code=response.status_code)
        try:
            payload = response.json()
        except ValueError:
            return {"status_code": response.status_code}
        return payload if isinstance(payload, dict) else {"result": payload}

    async def dispatch_all(self, messages: list[EmailMessage]) -> list[Any]:
        """Send all messages concurrently; failures are logged, never raised."""
        if not messages:
            return []
        if not self.enabled:
            logger.info("Email relay not configured; %d notification(s) skipped", len(messages))
            return []

        results = await asyncio.gather(
            *(self.send(m) for m in messages), return_exceptions=True
        )
        for message, result in zip(messages, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Notification to %s (%s) failed",
                    message.to,
                    message.subject,
                    exc_info=result,
                )
        return list(results)


_dispatcher = NotificationDispatcher()


def get_dispatcher() -> NotificationDispatcher:
    return _dispatcher
