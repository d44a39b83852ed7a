"""
Domain models for the Gatepass visitor access service.

These are pure domain objects with no infrastructure dependencies.
They represent visit requests, access credentials and gate outcomes.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> datetime:
    """
    Current time as naive UTC with whole-second precision.

    Every timestamp in the lifecycle uses this resolution so that the
    issue time embedded in a credential token matches the stored one.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def new_id() -> str:
    """Generate an opaque record identifier."""
    return uuid.uuid4().hex


class VisitMode(str, Enum):
    """
    How the visitor started the request.

    PIN: Visitor holds a pre-arranged estate PIN.
    QR: Visitor scanned the estate QR code and captured documents.
    """

    PIN = "pin"
    QR = "qr"


class TravelType(str, Enum):
    """Whether the visitor arrives by car or on foot."""

    DRIVER = "driver"
    PEDESTRIAN = "pedestrian"


class VisitStatus(str, Enum):
    """
    Lifecycle status of a visit request.

    PENDING is the only non-terminal state. Transitions never return to it.
    """

    PENDING = "pending"
    GRANTED = "granted"
    DENIED = "denied"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        """True for GRANTED, DENIED and EXPIRED."""
        return self is not VisitStatus.PENDING


class ResidentDecision(str, Enum):
    """Outcome a resident can apply to a pending request."""

    GRANTED = "granted"
    DENIED = "denied"

    @property
    def status(self) -> VisitStatus:
        """Visit status this decision moves the request to."""
        return VisitStatus(self.value)


class CredentialState(str, Enum):
    """Effective state of an issued access credential."""

    ISSUED = "issued"
    CONSUMED = "consumed"
    EXPIRED = "expired"


class RejectReason(str, Enum):
    """Why the gate refused a presented credential."""

    MALFORMED = "malformed"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"


# Operator-facing messages shown on the gate scanner
REJECT_MESSAGES: dict[RejectReason, str] = {
    RejectReason.MALFORMED: "Pass not recognised",
    RejectReason.NOT_FOUND: "Pass not recognised",
    RejectReason.EXPIRED: "Pass has expired",
    RejectReason.ALREADY_USED: "Pass has already been used",
}


class NotificationKind(str, Enum):
    """Kinds of outbound notifications."""

    NEW_REQUEST = "visit_request_created"
    DECISION = "visit_request_decided"


@dataclass(frozen=True)
class DocumentBundle:
    """
    Identity and vehicle documents submitted with a visit request.

    References are opaque handles returned by document storage; their
    contents are never inspected here.

    Attributes:
        identity_document_ref: Handle of the identity document.
        vehicle_document_ref: Handle of the vehicle licence disc (drivers only).
    """

    identity_document_ref: str | None
    vehicle_document_ref: str | None = None

    def refs(self) -> list[str]:
        """All stored document handles in the bundle."""
        return [
            ref for ref in (self.identity_document_ref, self.vehicle_document_ref)
            if ref
        ]


@dataclass(frozen=True)
class GuestInfo:
    """Who the visitor is and how to reach them."""

    name: str
    contact: str
    purpose: str | None = None


@dataclass(frozen=True)
class Resident:
    """
    Resident who decides visits for a unit.

    Attributes:
        reference: Stable resident identifier.
        name: Display name shown to the visitor.
        unit_reference: Unit the resident lives in.
        estate_reference: Estate the unit belongs to.
    """

    reference: str
    name: str
    unit_reference: str
    estate_reference: str


@dataclass(frozen=True)
class PinValidation:
    """
    Response from the estate PIN validation service.

    Attributes:
        valid: Whether the PIN is accepted.
        guest_name: Authoritative guest name for the PIN, if known.
        purpose: Declared purpose of the visit, if known.
    """

    valid: bool
    guest_name: str | None = None
    purpose: str | None = None


@dataclass
class VisitRequest:
    """
    One visitor's entry attempt and its approval state.

    Attributes:
        mode: PIN or QR, fixed at creation.
        travel_type: Driver or pedestrian.
        documents: Submitted document bundle.
        estate_reference: Estate being visited.
        unit_reference: Unit being visited.
        guest_name: Visitor name.
        guest_contact: Visitor phone or address for decision notices.
        resident_reference: Resident who must decide.
        resident_name: Resident display name.
        created_at: When the request was submitted.
        expires_at: End of the decision window.
        status: Stored status (see effective status for reads).
        decided_at: When a resident decided, GRANTED/DENIED only.
        guest_purpose: Purpose from the PIN validator.
        pin_presented: PIN entered by the visitor, audit only.
        documents_released_at: When the document bundle was deleted.
        version: Compare-and-swap counter.
        id: Opaque identifier.
    """

    mode: VisitMode
    travel_type: TravelType
    documents: DocumentBundle
    estate_reference: str
    unit_reference: str
    guest_name: str
    guest_contact: str
    resident_reference: str
    resident_name: str
    created_at: datetime
    expires_at: datetime
    status: VisitStatus = VisitStatus.PENDING
    decided_at: datetime | None = None
    guest_purpose: str | None = None
    pin_presented: str | None = None
    documents_released_at: datetime | None = None
    version: int = 1
    id: str = field(default_factory=new_id)


@dataclass
class AccessCredential:
    """
    Short-lived, single-use pass minted when a visit is granted.

    Attributes:
        visit_request_id: Visit request this credential belongs to (1:1).
        token: Signed token presented at the gate.
        nonce: Random value embedded in the token.
        issued_at: Mint time, equal to the decision time.
        valid_until: End of the presentation window.
        consumed: Whether the pass has been used at the gate.
        consumed_at: When the pass was used.
        id: Opaque identifier.
    """

    visit_request_id: str
    token: str
    nonce: str
    issued_at: datetime
    valid_until: datetime
    consumed: bool = False
    consumed_at: datetime | None = None
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class GatePresentation:
    """
    Outcome of presenting a credential at the gate.

    Reason codes are meant for the operator screen. The message for an
    unknown pass and a forged one is the same on purpose.
    """

    admitted: bool
    reason: RejectReason | None = None
    visit_request_id: str | None = None
    guest_name: str | None = None
    unit_reference: str | None = None

    @property
    def message(self) -> str:
        """Human-readable line for the scanner display."""
        if self.admitted:
            return f"Admit {self.guest_name} to unit {self.unit_reference}"
        return REJECT_MESSAGES[self.reason]

    @classmethod
    def reject(cls, reason: RejectReason, visit_request_id: str | None = None) -> "GatePresentation":
        """Build a rejection."""
        return cls(admitted=False, reason=reason, visit_request_id=visit_request_id)


@dataclass
class GateEvent:
    """
    Audit record of one credential presentation.

    Attributes:
        visit_request_id: Visit the token resolved to, if it decoded.
        scanner_id: Device that scanned the token.
        admitted: Whether entry was granted.
        reason: Reject reason, None on admit.
        timestamp: When the token was presented.
        id: Set by the database.
    """

    visit_request_id: str | None
    scanner_id: str | None
    admitted: bool
    reason: RejectReason | None
    timestamp: datetime
    id: int | None = None


@dataclass(frozen=True)
class CredentialSnapshot:
    """Visitor-facing view of an access credential."""

    valid_until: datetime
    consumed: bool
    state: CredentialState
    token: str


@dataclass(frozen=True)
class VisitStatusSnapshot:
    """
    Visitor-facing status of a visit request for polling clients.

    Attributes:
        visit_request_id: Visit request ID.
        status: Effective status (lazy expiry applied).
        resident_name: Resident the request was sent to.
        credential: Pass details once granted.
        expires_at: End of the decision window.
        poll_after_seconds: Suggested delay before the next poll.
    """

    visit_request_id: str
    status: VisitStatus
    resident_name: str | None
    expires_at: datetime
    credential: CredentialSnapshot | None = None
    poll_after_seconds: int | None = None


@dataclass(frozen=True)
class VisitSummary:
    """
    One line of a resident inbox or an estate history listing.

    The status is the effective one, never the raw stored value.
    """

    visit_request_id: str
    mode: VisitMode
    travel_type: TravelType
    guest_name: str
    unit_reference: str
    resident_name: str
    status: VisitStatus
    created_at: datetime
    expires_at: datetime
    decided_at: datetime | None = None
