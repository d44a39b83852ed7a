"""Domain layer package - business rules and core models."""

from gatepass.domain.models import (
    AccessCredential,
    CredentialSnapshot,
    CredentialState,
    DocumentBundle,
    GateEvent,
    GatePresentation,
    GuestInfo,
    NotificationKind,
    PinValidation,
    RejectReason,
    Resident,
    ResidentDecision,
    TravelType,
    VisitMode,
    VisitRequest,
    VisitStatus,
    VisitStatusSnapshot,
    VisitSummary,
    utc_now,
)
from gatepass.domain.services import (
    DecisionGuard,
    DocumentPresenceRule,
    ExpiryEvaluator,
)

__all__ = [
    # Models
    "AccessCredential",
    "CredentialSnapshot",
    "CredentialState",
    "DocumentBundle",
    "GateEvent",
    "GatePresentation",
    "GuestInfo",
    "NotificationKind",
    "PinValidation",
    "RejectReason",
    "Resident",
    "ResidentDecision",
    "TravelType",
    "VisitMode",
    "VisitRequest",
    "VisitStatus",
    "VisitStatusSnapshot",
    "VisitSummary",
    "utc_now",
    # Services
    "DecisionGuard",
    "DocumentPresenceRule",
    "ExpiryEvaluator",
]
