"""
Interfaces of the external collaborators the lifecycle depends on.

Implementations live in the infrastructure layer; tests substitute
mocks. None of these may fabricate data on failure: errors surface as
DependencyError.
"""

from abc import ABC, abstractmethod
from typing import Any

from gatepass.domain.models import NotificationKind, PinValidation, Resident


class PinValidator(ABC):
    """Estate PIN validation service. Authoritative and called once."""

    @abstractmethod
    async def validate(self, pin: str, estate_reference: str) -> PinValidation:
        """
        Validate a visitor PIN for an estate.

        Raises:
            DependencyError: If the service cannot be reached.
        """


class ResidentDirectory(ABC):
    """Lookup of the resident responsible for a unit."""

    @abstractmethod
    async def resident_for_unit(
        self,
        unit_reference: str,
        estate_reference: str,
    ) -> Resident | None:
        """
        Resolve the resident for a unit.

        Returns:
            Resident: The resident, or None if the unit has none.

        Raises:
            DependencyError: If the directory cannot be reached.
        """


class DocumentStorage(ABC):
    """Opaque storage for identity and vehicle documents."""

    @abstractmethod
    async def store(self, content: bytes, category: str) -> str:
        """Persist a document and return its handle."""

    @abstractmethod
    async def delete(self, document_ref: str) -> bool:
        """Delete a document. Returns False if it did not exist."""


class NotificationDispatcher(ABC):
    """Outbound notification transport (push, SMS, webhook)."""

    @abstractmethod
    async def notify(
        self,
        target_reference: str,
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> bool:
        """
        Deliver one notification.

        Returns:
            bool: True if the transport accepted it.
        """
