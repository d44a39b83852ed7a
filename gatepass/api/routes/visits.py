"""
Visit request API routes.

Endpoints used by visitor devices (submit, poll status) and resident
devices (decide).
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, File, Form, Path, UploadFile, status
from pydantic import BaseModel, Field

from gatepass.api.deps import ApiKeyAuth, Documents, LifecycleEngine, RateLimited, StatusReader
from gatepass.core.logging import get_logger
from gatepass.domain.errors import GatepassError
from gatepass.domain.models import (
    CredentialState,
    DocumentBundle,
    GuestInfo,
    ResidentDecision,
    TravelType,
    VisitMode,
    VisitRequest,
    VisitStatus,
)
from gatepass.domain.ports import DocumentStorage

logger = get_logger(__name__)

router = APIRouter(prefix="/visits", tags=["visits"])


class VisitRequestResponse(BaseModel):
    """Response model for a visit request."""

    id: str = Field(description="Visit request ID")
    mode: VisitMode = Field(description="How the request was started", examples=["qr"])
    travel_type: TravelType = Field(description="Driver or pedestrian", examples=["driver"])
    status: VisitStatus = Field(description="Stored status", examples=["pending"])
    estate_reference: str
    unit_reference: str
    guest_name: str
    guest_purpose: str | None = None
    resident_name: str = Field(description="Resident who decides the request")
    created_at: datetime
    expires_at: datetime = Field(description="End of the decision window")
    decided_at: datetime | None = None

    @classmethod
    def from_domain(cls, visit: VisitRequest) -> "VisitRequestResponse":
        return cls(
            id=visit.id,
            mode=visit.mode,
            travel_type=visit.travel_type,
            status=visit.status,
            estate_reference=visit.estate_reference,
            unit_reference=visit.unit_reference,
            guest_name=visit.guest_name,
            guest_purpose=visit.guest_purpose,
            resident_name=visit.resident_name,
            created_at=visit.created_at,
            expires_at=visit.expires_at,
            decided_at=visit.decided_at,
        )


class CredentialResponse(BaseModel):
    """Access pass details shown on the visitor device."""

    token: str = Field(description="Signed token rendered as the QR pass")
    valid_until: datetime
    consumed: bool
    state: CredentialState


class VisitStatusResponse(BaseModel):
    """Response model for the polling status endpoint."""

    visit_request_id: str
    status: VisitStatus = Field(description="Effective status", examples=["granted"])
    resident_name: str | None = None
    expires_at: datetime
    credential: CredentialResponse | None = None
    poll_after_seconds: int | None = Field(
        default=None,
        description="Suggested delay before polling again, absent once terminal",
    )


class DecisionRequest(BaseModel):
    """Request body for a resident decision."""

    decision: ResidentDecision = Field(examples=["granted"])
    resident_reference: str = Field(
        min_length=1,
        description="Resident making the decision",
    )


async def _store_upload(
    storage: DocumentStorage,
    upload: UploadFile | None,
    category: str,
) -> str | None:
    if upload is None:
        return None
    content = await upload.read()
    if not content:
        return None
    return await storage.store(content, category)


async def _discard(storage: DocumentStorage, refs: list[str]) -> None:
    for ref in refs:
        try:
            await storage.delete(ref)
        except GatepassError as e:
            logger.warning("upload_cleanup_failed", ref=ref, error=str(e))


@router.post(
    "",
    response_model=VisitRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit visit request",
    description="Create a PENDING visit request from a PIN or from the QR document capture flow.",
    responses={
        201: {"description": "Request created and resident notified"},
        401: {"description": "Invalid API key"},
        404: {"description": "No resident for the unit"},
        422: {"description": "Missing document or invalid PIN"},
        503: {"description": "PIN service, directory or storage unavailable"},
    },
)
async def submit_visit(
    engine: LifecycleEngine,
    storage: Documents,
    _: ApiKeyAuth,
    __: RateLimited,
    mode: Annotated[VisitMode, Form(description="pin or qr")],
    travel_type: Annotated[TravelType, Form(description="driver or pedestrian")],
    estate_reference: Annotated[str, Form(min_length=1)],
    unit_reference: Annotated[str, Form(min_length=1)],
    guest_name: Annotated[str, Form(description="Visitor name")] = "",
    guest_contact: Annotated[str, Form(description="Visitor phone number")] = "",
    guest_purpose: Annotated[str | None, Form()] = None,
    pin: Annotated[str | None, Form(description="Estate PIN, PIN mode only")] = None,
    identity_document: Annotated[
        UploadFile | None, File(description="Photo of the visitor's ID")
    ] = None,
    vehicle_document: Annotated[
        UploadFile | None, File(description="Photo of the licence disc, drivers only")
    ] = None,
) -> VisitRequestResponse:
    """
    Submit a visit request.

    **Authentication**: Requires X-API-Key header.

    Uploaded documents are stored first and removed again if the
    request is refused or cannot be saved.
    """
    stored: list[str] = []
    try:
        identity_ref = await _store_upload(storage, identity_document, "identity")
        if identity_ref:
            stored.append(identity_ref)
        vehicle_ref = await _store_upload(storage, vehicle_document, "vehicle")
        if vehicle_ref:
            stored.append(vehicle_ref)

        visit = await engine.submit_request(
            mode=mode,
            travel_type=travel_type,
            documents=DocumentBundle(
                identity_document_ref=identity_ref,
                vehicle_document_ref=vehicle_ref,
            ),
            estate_reference=estate_reference,
            unit_reference=unit_reference,
            guest=GuestInfo(name=guest_name, contact=guest_contact, purpose=guest_purpose),
            pin=pin,
        )
    except Exception:
        await _discard(storage, stored)
        raise

    return VisitRequestResponse.from_domain(visit)


@router.get(
    "/{visit_id}/status",
    response_model=VisitStatusResponse,
    summary="Poll visit status",
    description="Effective status of a visit request, with the pass once granted.",
)
async def get_visit_status(
    visit_id: Annotated[str, Path(description="Visit request ID")],
    view: StatusReader,
    _: ApiKeyAuth,
    __: RateLimited,
) -> VisitStatusResponse:
    """
    Poll the status of a visit request.

    **Authentication**: Requires X-API-Key header.

    Clients should wait `poll_after_seconds` before polling again and
    stop once the status is terminal.
    """
    snapshot = await view.describe(visit_id)

    credential = None
    if snapshot.credential is not None:
        credential = CredentialResponse(
            token=snapshot.credential.token,
            valid_until=snapshot.credential.valid_until,
            consumed=snapshot.credential.consumed,
            state=snapshot.credential.state,
        )

    return VisitStatusResponse(
        visit_request_id=snapshot.visit_request_id,
        status=snapshot.status,
        resident_name=snapshot.resident_name,
        expires_at=snapshot.expires_at,
        credential=credential,
        poll_after_seconds=snapshot.poll_after_seconds,
    )


@router.post(
    "/{visit_id}/decision",
    response_model=VisitRequestResponse,
    summary="Decide visit request",
    description="Grant or deny a pending visit request. Granting mints the access pass.",
    responses={
        403: {"description": "Resident is not the addressee"},
        404: {"description": "Visit request not found"},
        409: {"description": "Already decided or expired"},
    },
)
async def decide_visit(
    visit_id: Annotated[str, Path(description="Visit request ID")],
    body: DecisionRequest,
    engine: LifecycleEngine,
    _: ApiKeyAuth,
    __: RateLimited,
) -> VisitRequestResponse:
    """
    Apply a resident decision.

    **Authentication**: Requires X-API-Key header.
    """
    visit = await engine.decide(visit_id, body.decision, body.resident_reference)
    return VisitRequestResponse.from_domain(visit)
