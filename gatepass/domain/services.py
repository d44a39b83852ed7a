"""
Domain services for the visit lifecycle.

These services contain pure business rules with no infrastructure
dependencies. They can be easily unit tested.
"""

from dataclasses import dataclass
from datetime import datetime

from gatepass.domain.errors import (
    AlreadyDecidedError,
    MissingDocumentError,
    NotAuthorizedError,
    RequestExpiredError,
    UnexpectedDocumentError,
)
from gatepass.domain.models import (
    AccessCredential,
    CredentialState,
    DocumentBundle,
    TravelType,
    VisitRequest,
    VisitStatus,
)


@dataclass
class DocumentPresenceRule:
    """
    Enforces which documents a visit request must carry.

    Identity is always required. A vehicle document is required for
    drivers and refused for pedestrians.

    Example:
        >>> rule = DocumentPresenceRule()
        >>> rule.check(TravelType.PEDESTRIAN, DocumentBundle("id/1"))
    """

    def check(self, travel_type: TravelType, documents: DocumentBundle | None) -> None:
        """
        Validate a document bundle for a travel type.

        Args:
            travel_type: How the visitor arrives.
            documents: Submitted bundle.

        Raises:
            MissingDocumentError: If a required document is absent.
            UnexpectedDocumentError: If a pedestrian sent a vehicle document.
        """
        if documents is None or not documents.identity_document_ref:
            raise MissingDocumentError("Identity document is required")

        if travel_type == TravelType.DRIVER and not documents.vehicle_document_ref:
            raise MissingDocumentError("Vehicle document is required for drivers")

        if travel_type == TravelType.PEDESTRIAN and documents.vehicle_document_ref:
            raise UnexpectedDocumentError("Pedestrian visits do not take a vehicle document")


@dataclass
class ExpiryEvaluator:
    """
    Computes time-dependent state at read time.

    Stored status is never trusted on its own: a PENDING record past its
    window reads as EXPIRED whether or not the sweep has run.
    """

    def is_request_expired(self, visit: VisitRequest, now: datetime) -> bool:
        """True if the request's decision window has passed."""
        return now > visit.expires_at

    def effective_status(self, visit: VisitRequest, now: datetime) -> VisitStatus:
        """
        Status as every reader must observe it.

        Args:
            visit: Stored visit request.
            now: Current time.

        Returns:
            VisitStatus: Terminal stored status, else EXPIRED or PENDING.
        """
        if visit.status.is_terminal:
            return visit.status
        if self.is_request_expired(visit, now):
            return VisitStatus.EXPIRED
        return VisitStatus.PENDING

    def credential_state(self, credential: AccessCredential, now: datetime) -> CredentialState:
        """
        Effective state of a credential.

        A consumed pass stays CONSUMED after its window closes.
        """
        if credential.consumed:
            return CredentialState.CONSUMED
        if now > credential.valid_until:
            return CredentialState.EXPIRED
        return CredentialState.ISSUED


@dataclass
class DecisionGuard:
    """
    Decides whether a resident may apply a decision right now.

    Checks run in a fixed order: the acting resident first, so that a
    stranger learns nothing about the request's state.
    """

    evaluator: ExpiryEvaluator

    def ensure_decidable(
        self,
        visit: VisitRequest,
        acting_resident: str,
        now: datetime,
    ) -> None:
        """
        Raise if the decision cannot be applied.

        Args:
            visit: Current stored request.
            acting_resident: Resident attempting the decision.
            now: Current time.

        Raises:
            NotAuthorizedError: Acting resident is not the addressee.
            AlreadyDecidedError: Request was granted or denied.
            RequestExpiredError: Request is past its window, whether or not
                the expiry has been stored yet.
        """
        if acting_resident != visit.resident_reference:
            raise NotAuthorizedError("Only the addressed resident can decide this visit")

        if visit.status == VisitStatus.EXPIRED:
            raise RequestExpiredError("Visit request expired before a decision was made")

        if visit.status.is_terminal:
            raise AlreadyDecidedError(f"Visit request is already {visit.status.value}")

        if self.evaluator.is_request_expired(visit, now):
            raise RequestExpiredError("Visit request expired before a decision was made")
