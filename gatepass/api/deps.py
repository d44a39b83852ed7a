"""
FastAPI dependencies for dependency injection.

Wires repositories, external collaborators and use cases for route
handlers. The engine is built per request; only the notification relay
lives for the whole process, so in-flight dispatches can be drained at
shutdown.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gatepass.application.documents import DocumentReleaser
from gatepass.application.notifications import NotificationRelay
from gatepass.application.status_view import StatusView
from gatepass.application.visit_lifecycle import VisitLifecycleEngine
from gatepass.core.config import get_settings
from gatepass.core.security import (
    CredentialCodec,
    check_rate_limit,
    get_credential_codec,
    verify_api_key,
)
from gatepass.domain.ports import DocumentStorage, PinValidator
from gatepass.infrastructure.clients import (
    HttpPinValidator,
    NullNotificationDispatcher,
    UnconfiguredPinValidator,
    WebhookNotificationDispatcher,
)
from gatepass.infrastructure.db.repository import (
    AccessCredentialRepository,
    GateEventRepository,
    ResidentRepository,
    VisitRequestRepository,
)
from gatepass.infrastructure.db.session import get_session_factory
from gatepass.infrastructure.storage import LocalDocumentStorage

# Type aliases for cleaner route signatures
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
ApiKeyAuth = Annotated[None, Depends(verify_api_key)]
RateLimited = Annotated[None, Depends(check_rate_limit)]

_notification_relay: NotificationRelay | None = None


def get_visit_repository(session_factory: SessionFactory) -> VisitRequestRepository:
    return VisitRequestRepository(session_factory)


def get_credential_repository(session_factory: SessionFactory) -> AccessCredentialRepository:
    return AccessCredentialRepository(session_factory)


def get_resident_repository(session_factory: SessionFactory) -> ResidentRepository:
    return ResidentRepository(session_factory)


def get_gate_event_repository(session_factory: SessionFactory) -> GateEventRepository:
    return GateEventRepository(session_factory)


def get_pin_validator() -> PinValidator:
    """
    Dependency to get the PIN validation client.

    Returns:
        PinValidator: HTTP client, or a fail-closed stand-in when no
        service URL is configured.
    """
    settings = get_settings()
    if not settings.pin_validator_url:
        return UnconfiguredPinValidator()
    return HttpPinValidator(
        settings.pin_validator_url,
        timeout_seconds=settings.pin_validator_timeout_seconds,
    )


def get_document_storage() -> DocumentStorage:
    return LocalDocumentStorage()


def get_notification_relay() -> NotificationRelay:
    """
    Dependency to get the process-wide notification relay.

    Returns:
        NotificationRelay: Relay over the webhook dispatcher, or over a
        logging-only dispatcher when no webhook is configured.
    """
    global _notification_relay
    if _notification_relay is None:
        settings = get_settings()
        if settings.notification_webhook_url:
            dispatcher = WebhookNotificationDispatcher(
                settings.notification_webhook_url,
                timeout_seconds=settings.notification_timeout_seconds,
            )
        else:
            dispatcher = NullNotificationDispatcher()
        _notification_relay = NotificationRelay(dispatcher)
    return _notification_relay


Visits = Annotated[VisitRequestRepository, Depends(get_visit_repository)]
Credentials = Annotated[AccessCredentialRepository, Depends(get_credential_repository)]
Residents = Annotated[ResidentRepository, Depends(get_resident_repository)]
GateEvents = Annotated[GateEventRepository, Depends(get_gate_event_repository)]
Pins = Annotated[PinValidator, Depends(get_pin_validator)]
Documents = Annotated[DocumentStorage, Depends(get_document_storage)]
Relay = Annotated[NotificationRelay, Depends(get_notification_relay)]
Codec = Annotated[CredentialCodec, Depends(get_credential_codec)]


async def get_lifecycle_engine(
    visits: Visits,
    credentials: Credentials,
    residents: Residents,
    gate_events: GateEvents,
    pin_validator: Pins,
    documents: Documents,
    relay: Relay,
    codec: Codec,
) -> VisitLifecycleEngine:
    """
    Dependency to get the visit lifecycle engine.

    Returns:
        VisitLifecycleEngine: Engine bound to this request's collaborators.
    """
    return VisitLifecycleEngine(
        visits=visits,
        credentials=credentials,
        pin_validator=pin_validator,
        directory=residents,
        notifications=relay,
        codec=codec,
        document_releaser=DocumentReleaser(documents, visits),
        gate_events=gate_events,
    )


async def get_status_view(visits: Visits, credentials: Credentials) -> StatusView:
    """
    Dependency to get the status read model.

    Returns:
        StatusView: Read model over the visit and credential stores.
    """
    return StatusView(visits, credentials)


# Type aliases for use case dependencies
LifecycleEngine = Annotated[VisitLifecycleEngine, Depends(get_lifecycle_engine)]
StatusReader = Annotated[StatusView, Depends(get_status_view)]
