"""
Visit request lifecycle use case.

Owns the state machine of a visit request:

1. Submission (PIN or QR), validated and persisted as PENDING
2. Resident decision, applied by compare-and-swap
3. Credential minting on grant, in the decision's transaction
4. Credential presentation at the gate, consumed exactly once

Time-dependent state is computed at read time. Notifications are
dispatched after commit and never affect the outcome of a transition.
"""

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from gatepass.application.documents import DocumentReleaser
from gatepass.application.notifications import NotificationRelay
from gatepass.core.config import get_settings
from gatepass.core.logging import get_logger
from gatepass.core.security import CredentialCodec
from gatepass.domain.errors import (
    ConflictError,
    InvalidPinError,
    MalformedTokenError,
    UnitNotFoundError,
    ValidationError,
    VisitRequestNotFoundError,
)
from gatepass.domain.models import (
    AccessCredential,
    DocumentBundle,
    GateEvent,
    GatePresentation,
    GuestInfo,
    NotificationKind,
    RejectReason,
    ResidentDecision,
    TravelType,
    VisitMode,
    VisitRequest,
    VisitStatus,
    utc_now,
)
from gatepass.domain.ports import PinValidator, ResidentDirectory
from gatepass.domain.services import DecisionGuard, DocumentPresenceRule, ExpiryEvaluator
from gatepass.infrastructure.db.repository import (
    AccessCredentialRepository,
    GateEventRepository,
    VisitRequestRepository,
)

logger = get_logger(__name__)


class VisitLifecycleEngine:
    """
    State machine for visitor access requests.

    Safe under concurrent callers: every transition is a single
    conditional update in storage, so racing residents or gate scanners
    resolve to exactly one winner.

    Example:
        engine = VisitLifecycleEngine(visits, credentials, pins, directory,
                                      relay, codec, releaser)
        visit = await engine.submit_request(VisitMode.QR, ...)
        await engine.decide(visit.id, ResidentDecision.GRANTED, "res-1")
    """

    def __init__(
        self,
        visits: VisitRequestRepository,
        credentials: AccessCredentialRepository,
        pin_validator: PinValidator,
        directory: ResidentDirectory,
        notifications: NotificationRelay,
        codec: CredentialCodec,
        document_releaser: DocumentReleaser,
        gate_events: GateEventRepository | None = None,
        request_window: timedelta | None = None,
        credential_window: timedelta | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the engine.

        Args:
            visits: Visit request store.
            credentials: Access credential store.
            pin_validator: Estate PIN validation service.
            directory: Resident lookup by unit.
            notifications: Best-effort notification relay.
            codec: Credential token codec.
            document_releaser: Deletes documents of terminal requests.
            gate_events: Optional audit trail of gate presentations.
            request_window: Decision window, defaults from settings.
            credential_window: Pass validity window, defaults from settings.
            clock: Source of the current time.
        """
        settings = get_settings()
        self._visits = visits
        self._credentials = credentials
        self._pin_validator = pin_validator
        self._directory = directory
        self._notifications = notifications
        self._codec = codec
        self._releaser = document_releaser
        self._gate_events = gate_events
        self._request_window = request_window or settings.request_window
        self._credential_window = credential_window or settings.credential_window
        self._clock = clock

        self._document_rule = DocumentPresenceRule()
        self._evaluator = ExpiryEvaluator()
        self._guard = DecisionGuard(self._evaluator)

    async def submit_request(
        self,
        mode: VisitMode,
        travel_type: TravelType,
        documents: DocumentBundle | None,
        estate_reference: str,
        unit_reference: str,
        guest: GuestInfo,
        pin: str | None = None,
    ) -> VisitRequest:
        """
        Create a PENDING visit request.

        Args:
            mode: PIN or QR.
            travel_type: Driver or pedestrian.
            documents: Stored identity and vehicle document handles.
            estate_reference: Estate being visited.
            unit_reference: Unit being visited.
            guest: Caller-supplied guest details.
            pin: Visitor PIN, mandatory in PIN mode.

        Returns:
            VisitRequest: The persisted request.

        Raises:
            MissingDocumentError: Required document absent.
            UnexpectedDocumentError: Vehicle document on a pedestrian visit.
            InvalidPinError: PIN absent or rejected.
            UnitNotFoundError: No resident for the unit.
            DependencyError: PIN service or directory unreachable.
        """
        self._document_rule.check(travel_type, documents)

        guest_name = guest.name
        guest_purpose = guest.purpose
        pin_presented = None

        if mode == VisitMode.PIN:
            if not pin:
                raise InvalidPinError("A PIN is required for PIN visits")

            validation = await self._pin_validator.validate(pin, estate_reference)
            if not validation.valid:
                logger.warning(
                    "pin_rejected",
                    estate=estate_reference,
                    unit=unit_reference,
                )
                raise InvalidPinError("The PIN was not accepted")

            # Validator data wins over what the visitor typed
            guest_name = validation.guest_name or guest_name
            guest_purpose = validation.purpose or guest_purpose
            pin_presented = pin

        if not guest_name or not guest.contact:
            raise ValidationError("Guest name and contact are required")

        resident = await self._directory.resident_for_unit(unit_reference, estate_reference)
        if resident is None:
            raise UnitNotFoundError(f"No resident found for unit {unit_reference}")

        now = self._clock()
        visit = VisitRequest(
            mode=mode,
            travel_type=travel_type,
            documents=documents,
            estate_reference=estate_reference,
            unit_reference=unit_reference,
            guest_name=guest_name,
            guest_contact=guest.contact,
            guest_purpose=guest_purpose,
            resident_reference=resident.reference,
            resident_name=resident.name,
            created_at=now,
            expires_at=now + self._request_window,
            pin_presented=pin_presented,
        )
        await self._visits.create(visit)

        logger.info(
            "visit_request_created",
            visit_request_id=visit.id,
            mode=mode.value,
            travel_type=travel_type.value,
            estate=estate_reference,
            unit=unit_reference,
        )

        self._notifications.dispatch(
            resident.reference,
            NotificationKind.NEW_REQUEST,
            {
                "visit_request_id": visit.id,
                "guest_name": visit.guest_name,
                "guest_purpose": visit.guest_purpose,
                "unit_reference": visit.unit_reference,
                "travel_type": visit.travel_type.value,
                "expires_at": visit.expires_at.isoformat(),
            },
        )
        return visit

    async def decide(
        self,
        visit_request_id: str,
        decision: ResidentDecision,
        acting_resident: str,
    ) -> VisitRequest:
        """
        Apply a resident's decision to a pending request.

        On grant, the credential is inserted in the same transaction as
        the status change.

        Args:
            visit_request_id: Visit request ID.
            decision: GRANTED or DENIED.
            acting_resident: Resident making the decision.

        Returns:
            VisitRequest: The decided request.

        Raises:
            VisitRequestNotFoundError: Unknown ID.
            NotAuthorizedError: Acting resident is not the addressee.
            AlreadyDecidedError: Request already decided.
            RequestExpiredError: Decision window has passed.
        """
        visit = await self._get_or_raise(visit_request_id)
        now = self._clock()
        self._guard.ensure_decidable(visit, acting_resident, now)

        status = decision.status
        credential: AccessCredential | None = None

        async with self._visits.transaction() as session:
            won = await self._visits.apply_decision(
                visit.id,
                visit.version,
                status,
                now,
                session=session,
            )
            if won and status == VisitStatus.GRANTED:
                credential = self._mint_credential(visit.id, now)
                await self._credentials.create(credential, session=session)

        if not won:
            current = await self._get_or_raise(visit_request_id)
            logger.info(
                "decision_lost_race",
                visit_request_id=visit_request_id,
                status=current.status.value,
            )
            self._guard.ensure_decidable(current, acting_resident, now)
            raise ConflictError("Visit request changed while deciding")

        logger.info(
            "visit_request_decided",
            visit_request_id=visit.id,
            status=status.value,
            credential_id=credential.id if credential else None,
        )

        decided = await self._get_or_raise(visit.id)
        await self._releaser.release(decided, now)

        payload = {
            "visit_request_id": visit.id,
            "status": status.value,
            "resident_name": visit.resident_name,
            "decided_at": now.isoformat(),
        }
        if credential is not None:
            payload["token"] = credential.token
            payload["valid_until"] = credential.valid_until.isoformat()
        self._notifications.dispatch(
            visit.guest_contact,
            NotificationKind.DECISION,
            payload,
        )

        return await self._get_or_raise(visit.id)

    async def current_status(self, visit_request_id: str) -> VisitStatus:
        """
        Effective status of a request. Performs no writes.

        Raises:
            VisitRequestNotFoundError: Unknown ID.
        """
        visit = await self._get_or_raise(visit_request_id)
        return self._evaluator.effective_status(visit, self._clock())

    async def present_credential(
        self,
        token: str,
        scanner_id: str | None = None,
    ) -> GatePresentation:
        """
        Validate a pass at the gate and consume it.

        Args:
            token: Raw token as scanned.
            scanner_id: Scanning device, for the audit trail.

        Returns:
            GatePresentation: Admit with guest details, or a reject reason.
        """
        now = self._clock()
        result = await self._evaluate_presentation(token, now)

        logger.info(
            "credential_presented",
            admitted=result.admitted,
            reason=result.reason.value if result.reason else None,
            visit_request_id=result.visit_request_id,
            scanner_id=scanner_id,
        )
        await self._record_gate_event(result, scanner_id, now)
        return result

    async def drain_notifications(self) -> None:
        """Wait for in-flight notifications to finish."""
        await self._notifications.drain()

    async def _evaluate_presentation(self, token: str, now: datetime) -> GatePresentation:
        try:
            claims = self._codec.decode(token)
        except MalformedTokenError:
            return GatePresentation.reject(RejectReason.MALFORMED)

        visit_id = claims.visit_request_id
        credential = await self._credentials.get_by_visit_request(visit_id)
        if credential is None or not secrets.compare_digest(credential.nonce, claims.nonce):
            return GatePresentation.reject(RejectReason.NOT_FOUND)

        if now > credential.valid_until:
            return GatePresentation.reject(RejectReason.EXPIRED, visit_id)

        if credential.consumed:
            return GatePresentation.reject(RejectReason.ALREADY_USED, visit_id)

        if not await self._credentials.consume(credential.id, now):
            return GatePresentation.reject(RejectReason.ALREADY_USED, visit_id)

        visit = await self._visits.get(visit_id)
        return GatePresentation(
            admitted=True,
            visit_request_id=visit_id,
            guest_name=visit.guest_name if visit else None,
            unit_reference=visit.unit_reference if visit else None,
        )

    async def _record_gate_event(
        self,
        result: GatePresentation,
        scanner_id: str | None,
        now: datetime,
    ) -> None:
        if self._gate_events is None:
            return
        try:
            await self._gate_events.create(
                GateEvent(
                    visit_request_id=result.visit_request_id,
                    scanner_id=scanner_id,
                    admitted=result.admitted,
                    reason=result.reason,
                    timestamp=now,
                )
            )
        except SQLAlchemyError as e:
            logger.error("gate_event_record_failed", error=str(e))

    def _mint_credential(self, visit_request_id: str, issued_at: datetime) -> AccessCredential:
        nonce = secrets.token_urlsafe(16)
        return AccessCredential(
            visit_request_id=visit_request_id,
            token=self._codec.encode(visit_request_id, issued_at, nonce),
            nonce=nonce,
            issued_at=issued_at,
            valid_until=issued_at + self._credential_window,
        )

    async def _get_or_raise(self, visit_request_id: str) -> VisitRequest:
        visit = await self._visits.get(visit_request_id)
        if visit is None:
            raise VisitRequestNotFoundError(f"Visit request {visit_request_id} not found")
        return visit
