"""
Resident and estate listing routes.

Read-only views for resident devices (pending inbox) and estate
management (visit history).
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Path, Query
from pydantic import BaseModel, Field

from gatepass.api.deps import ApiKeyAuth, RateLimited, StatusReader
from gatepass.domain.models import TravelType, VisitMode, VisitStatus, VisitSummary

residents_router = APIRouter(prefix="/residents", tags=["residents"])
estates_router = APIRouter(prefix="/estates", tags=["estates"])


class VisitSummaryResponse(BaseModel):
    """One visit request in a listing."""

    visit_request_id: str
    mode: VisitMode
    travel_type: TravelType
    guest_name: str
    unit_reference: str
    resident_name: str
    status: VisitStatus = Field(description="Effective status")
    created_at: datetime
    expires_at: datetime
    decided_at: datetime | None = None


class VisitListResponse(BaseModel):
    """Response for visit listings."""

    visits: list[VisitSummaryResponse]
    count: int


def _to_list_response(summaries: list[VisitSummary]) -> VisitListResponse:
    visits = [
        VisitSummaryResponse(
            visit_request_id=summary.visit_request_id,
            mode=summary.mode,
            travel_type=summary.travel_type,
            guest_name=summary.guest_name,
            unit_reference=summary.unit_reference,
            resident_name=summary.resident_name,
            status=summary.status,
            created_at=summary.created_at,
            expires_at=summary.expires_at,
            decided_at=summary.decided_at,
        )
        for summary in summaries
    ]
    return VisitListResponse(visits=visits, count=len(visits))


@residents_router.get(
    "/{resident_reference}/visits",
    response_model=VisitListResponse,
    summary="Pending visits for a resident",
    description="Requests the resident can still grant or deny, newest first.",
)
async def list_pending_visits(
    resident_reference: Annotated[str, Path(description="Resident reference")],
    view: StatusReader,
    _: ApiKeyAuth,
    __: RateLimited,
    estate_reference: Annotated[str, Query(min_length=1)],
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> VisitListResponse:
    """
    List a resident's pending visit requests.

    **Authentication**: Requires X-API-Key header.
    """
    summaries = await view.pending_for_resident(
        resident_reference,
        estate_reference,
        limit=limit,
    )
    return _to_list_response(summaries)


@estates_router.get(
    "/{estate_reference}/visits",
    response_model=VisitListResponse,
    summary="Estate visit history",
)
async def list_estate_visits(
    estate_reference: Annotated[str, Path(description="Estate reference")],
    view: StatusReader,
    _: ApiKeyAuth,
    __: RateLimited,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> VisitListResponse:
    """Visit history of an estate with effective statuses."""
    summaries = await view.history(estate_reference, limit=limit)
    return _to_list_response(summaries)
