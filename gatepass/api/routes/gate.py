"""
Gate scanner API routes.

The scanner posts the raw token it read; the response tells the
operator whether to open the gate.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from gatepass.api.deps import ApiKeyAuth, GateEvents, LifecycleEngine, RateLimited
from gatepass.domain.models import RejectReason

router = APIRouter(prefix="/gate", tags=["gate"])


class PresentRequest(BaseModel):
    """Request body for presenting a pass."""

    token: str = Field(description="Raw token as scanned or typed")
    scanner_id: str | None = Field(default=None, examples=["GATE-NORTH-1"])


class PresentResponse(BaseModel):
    """Admit or reject, for the operator screen."""

    admitted: bool
    reason: RejectReason | None = Field(default=None, examples=["already_used"])
    message: str = Field(examples=["Pass has already been used"])
    visit_request_id: str | None = None
    guest_name: str | None = None
    unit_reference: str | None = None


class GateEventEntry(BaseModel):
    """Response model for a gate audit entry."""

    id: int
    visit_request_id: str | None
    scanner_id: str | None
    admitted: bool
    reason: RejectReason | None
    timestamp: datetime


class GateEventListResponse(BaseModel):
    """Response for listing gate events."""

    events: list[GateEventEntry]
    count: int


@router.post(
    "/present",
    response_model=PresentResponse,
    summary="Present access pass",
    description="Validate a pass and consume it. A pass admits exactly once.",
)
async def present_credential(
    body: PresentRequest,
    engine: LifecycleEngine,
    _: ApiKeyAuth,
    __: RateLimited,
) -> PresentResponse:
    """
    Present a pass at the gate.

    **Authentication**: Requires X-API-Key header. Reject reasons are
    meant for the operator only.

    A rejected pass still answers 200; `admitted` carries the outcome.
    """
    result = await engine.present_credential(body.token, scanner_id=body.scanner_id)
    return PresentResponse(
        admitted=result.admitted,
        reason=result.reason,
        message=result.message,
        visit_request_id=result.visit_request_id,
        guest_name=result.guest_name,
        unit_reference=result.unit_reference,
    )


@router.get(
    "/events",
    response_model=GateEventListResponse,
    summary="List gate events",
)
async def list_gate_events(
    gate_events: GateEvents,
    _: ApiKeyAuth,
    __: RateLimited,
    scanner_id: str | None = None,
    visit_request_id: str | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> GateEventListResponse:
    """Recent presentation attempts, newest first."""
    events = await gate_events.list_recent(
        limit=limit,
        visit_request_id=visit_request_id,
        scanner_id=scanner_id,
    )
    entries = [
        GateEventEntry(
            id=event.id,
            visit_request_id=event.visit_request_id,
            scanner_id=event.scanner_id,
            admitted=event.admitted,
            reason=event.reason,
            timestamp=event.timestamp,
        )
        for event in events
        if event.id is not None
    ]
    return GateEventListResponse(events=entries, count=len(entries))
