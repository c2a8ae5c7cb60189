"""Outbound SMS delivery."""

from __future__ import annotations

from typing import Protocol

import httpx
import structlog

from ..core.config import Settings
from ..core.logging import mask_phone

logger = structlog.get_logger(__name__)


class DeliveryError(RuntimeError):
    """Raised when a message could not be handed to the provider."""


class Notifier(Protocol):
    async def send(self, phone: str, message: str) -> None:
        """Deliver ``message`` to ``phone`` or raise ``DeliveryError``."""
        ...


class LoggingNotifier:
    """Development notifier that records the delivery without the message body."""

    async def send(self, phone: str, message: str) -> None:
        logger.info("notifier.dry_run", phone=mask_phone(phone), length=len(message))


class HttpSmsNotifier:
    """Posts messages to a JSON SMS gateway authenticated with an API key."""

    def __init__(
        self,
        url: str,
        api_key: str | None,
        sender_id: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._sender_id = sender_id
        self._timeout = timeout
        self._transport = transport

    async def send(self, phone: str, message: str) -> None:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        payload = {"to": phone, "from": self._sender_id, "message": message}
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout), transport=self._transport
            ) as client:
                response = await client.post(self._url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "notifier.delivery_failed",
                phone=mask_phone(phone),
                error=str(exc),
            )
            raise DeliveryError(str(exc)) from exc
        logger.debug("notifier.delivered", phone=mask_phone(phone))


def build_notifier(settings: Settings) -> Notifier:
    if not settings.sms_gateway_url:
        return LoggingNotifier()
    return HttpSmsNotifier(
        settings.sms_gateway_url,
        settings.sms_api_key,
        settings.sms_sender_id,
        timeout=settings.sms_timeout_seconds,
    )
