"""Infrastructure layer package."""

from gatepass.infrastructure.clients import (
    HttpPinValidator,
    NullNotificationDispatcher,
    UnconfiguredPinValidator,
    WebhookNotificationDispatcher,
)
from gatepass.infrastructure.db import (
    AccessCredentialRepository,
    GateEventRepository,
    ResidentRepository,
    VisitRequestRepository,
    close_db,
    get_session_factory,
    init_db,
)
from gatepass.infrastructure.storage import LocalDocumentStorage, StorageError

__all__ = [
    # Database
    "get_session_factory",
    "init_db",
    "close_db",
    "VisitRequestRepository",
    "AccessCredentialRepository",
    "ResidentRepository",
    "GateEventRepository",
    # Clients
    "HttpPinValidator",
    "UnconfiguredPinValidator",
    "WebhookNotificationDispatcher",
    "NullNotificationDispatcher",
    # Storage
    "LocalDocumentStorage",
    "StorageError",
]
