"""
Visitor and resident read models.

Pure projections over the stores. Nothing here writes, so polling
clients can call it as often as they like.
"""

from collections.abc import Callable
from datetime import datetime

from gatepass.core.config import get_settings
from gatepass.domain.errors import VisitRequestNotFoundError
from gatepass.domain.models import (
    CredentialSnapshot,
    VisitRequest,
    VisitStatus,
    VisitStatusSnapshot,
    VisitSummary,
    utc_now,
)
from gatepass.domain.services import ExpiryEvaluator
from gatepass.infrastructure.db.repository import (
    AccessCredentialRepository,
    VisitRequestRepository,
)


class StatusView:
    """
    Status snapshots for polling visitor devices and resident inboxes.

    Example:
        view = StatusView(visits, credentials)
        snapshot = await view.describe(visit_id)
    """

    def __init__(
        self,
        visits: VisitRequestRepository,
        credentials: AccessCredentialRepository,
        poll_interval_seconds: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the view.

        Args:
            visits: Visit request store.
            credentials: Access credential store.
            poll_interval_seconds: Suggested polling delay while pending.
            clock: Source of the current time.
        """
        self._visits = visits
        self._credentials = credentials
        self._poll_interval = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else get_settings().status_poll_interval_seconds
        )
        self._clock = clock
        self._evaluator = ExpiryEvaluator()

    async def describe(self, visit_request_id: str) -> VisitStatusSnapshot:
        """
        Build the visitor-facing snapshot of a request.

        Args:
            visit_request_id: Visit request ID.

        Returns:
            VisitStatusSnapshot: Effective status, plus the pass once granted.

        Raises:
            VisitRequestNotFoundError: Unknown ID.
        """
        visit = await self._visits.get(visit_request_id)
        if visit is None:
            raise VisitRequestNotFoundError(f"Visit request {visit_request_id} not found")

        now = self._clock()
        status = self._evaluator.effective_status(visit, now)

        credential_snapshot = None
        if status == VisitStatus.GRANTED:
            credential = await self._credentials.get_by_visit_request(visit.id)
            if credential is not None:
                credential_snapshot = CredentialSnapshot(
                    valid_until=credential.valid_until,
                    consumed=credential.consumed,
                    state=self._evaluator.credential_state(credential, now),
                    token=credential.token,
                )

        return VisitStatusSnapshot(
            visit_request_id=visit.id,
            status=status,
            resident_name=visit.resident_name,
            expires_at=visit.expires_at,
            credential=credential_snapshot,
            poll_after_seconds=self._poll_interval if status == VisitStatus.PENDING else None,
        )

    async def pending_for_resident(
        self,
        resident_reference: str,
        estate_reference: str,
        limit: int = 50,
    ) -> list[VisitSummary]:
        """Requests the resident can still decide, newest first."""
        visits = await self._visits.list_pending_for_resident(
            resident_reference,
            estate_reference,
            self._clock(),
            limit=limit,
        )
        return [self._summarize(visit, VisitStatus.PENDING) for visit in visits]

    async def history(self, estate_reference: str, limit: int = 50) -> list[VisitSummary]:
        """
        Visit history of an estate, newest first.

        Args:
            estate_reference: Estate to list.
            limit: Maximum entries.

        Returns:
            list: Summaries carrying effective status.
        """
        now = self._clock()
        visits = await self._visits.list_for_estate(estate_reference, limit=limit)
        return [
            self._summarize(visit, self._evaluator.effective_status(visit, now))
            for visit in visits
        ]

    def _summarize(self, visit: VisitRequest, status: VisitStatus) -> VisitSummary:
        return VisitSummary(
            visit_request_id=visit.id,
            mode=visit.mode,
            travel_type=visit.travel_type,
            guest_name=visit.guest_name,
            unit_reference=visit.unit_reference,
            resident_name=visit.resident_name,
            status=status,
            created_at=visit.created_at,
            expires_at=visit.expires_at,
            decided_at=visit.decided_at,
        )
