"""Notification transports."""

from typing import Any

import httpx

from gatepass.core.logging import get_logger
from gatepass.domain.models import NotificationKind
from gatepass.domain.ports import NotificationDispatcher

logger = get_logger(__name__)


class WebhookNotificationDispatcher(NotificationDispatcher):
    """
    Hands notifications to a push/SMS gateway over a webhook.

    Transport errors propagate; the notification relay owns retries.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url
        self._timeout = timeout_seconds
        self._transport = transport

    async def notify(
        self,
        target_reference: str,
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> bool:
        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            response = await client.post(
                self._url,
                json={
                    "target": target_reference,
                    "kind": kind.value,
                    "payload": payload,
                },
            )

        if not response.is_success:
            logger.warning(
                "notification_rejected",
                kind=kind.value,
                status_code=response.status_code,
            )
        return response.is_success


class NullNotificationDispatcher(NotificationDispatcher):
    """Used when no gateway is configured: notifications are only logged."""

    async def notify(
        self,
        target_reference: str,
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> bool:
        logger.info("notification_dispatch_disabled", kind=kind.value)
        return True
