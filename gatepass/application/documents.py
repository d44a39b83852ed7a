"""Release of visitor documents once a request is terminal."""

from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from gatepass.core.logging import get_logger
from gatepass.domain.errors import DependencyError
from gatepass.domain.models import VisitRequest
from gatepass.domain.ports import DocumentStorage
from gatepass.infrastructure.db.repository import VisitRequestRepository

logger = get_logger(__name__)


class DocumentReleaser:
    """
    Deletes a request's document bundle and records that it happened.

    Best-effort: a failed release is logged and left for the expiry
    sweep to retry.
    """

    def __init__(self, storage: DocumentStorage, visits: VisitRequestRepository):
        self._storage = storage
        self._visits = visits

    async def release(self, visit: VisitRequest, now: datetime) -> bool:
        """
        Release the documents of a terminal visit request.

        Args:
            visit: Request whose bundle should be deleted.
            now: Release time.

        Returns:
            bool: True if the release was completed and recorded by this call.
        """
        if visit.documents_released_at is not None:
            return False

        try:
            for ref in visit.documents.refs():
                await self._storage.delete(ref)
            released = await self._visits.mark_documents_released(visit.id, now)
        except (DependencyError, SQLAlchemyError) as e:
            logger.warning(
                "document_release_failed",
                visit_request_id=visit.id,
                error=str(e),
            )
            return False

        if released:
            logger.info(
                "documents_released",
                visit_request_id=visit.id,
                count=len(visit.documents.refs()),
            )
        return released
