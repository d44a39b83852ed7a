"""Clients for external collaborators."""

from gatepass.infrastructure.clients.notifier import (
    NullNotificationDispatcher,
    WebhookNotificationDispatcher,
)
from gatepass.infrastructure.clients.pin_validator import (
    HttpPinValidator,
    UnconfiguredPinValidator,
)

__all__ = [
    "HttpPinValidator",
    "UnconfiguredPinValidator",
    "NullNotificationDispatcher",
    "WebhookNotificationDispatcher",
]
