"""
Repository pattern implementations for data access.

Repositories abstract database operations and provide a clean interface
for the application layer. Each operation runs in its own short
transaction unless the caller passes a session it already holds, which
is how the decide transition and the credential mint share one commit.

Every state change is a single conditional UPDATE. The rowcount tells
the caller whether it won the compare-and-swap.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Sequence

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gatepass.core.logging import get_logger
from gatepass.domain.errors import DependencyError
from gatepass.domain.models import (
    AccessCredential,
    DocumentBundle,
    GateEvent,
    RejectReason,
    Resident,
    TravelType,
    VisitMode,
    VisitRequest,
    VisitStatus,
)
from gatepass.domain.ports import ResidentDirectory
from gatepass.infrastructure.db.models import (
    AccessCredentialDB,
    GateEventDB,
    ResidentDB,
    VisitRequestDB,
)

logger = get_logger(__name__)

TERMINAL_STATUSES = [status.value for status in VisitStatus if status.is_terminal]


class SessionScopedRepository:
    """
    Shared transaction handling for repositories.

    Holds a session factory rather than a session so that concurrent
    callers never share a connection.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Initialize repository with a session factory.

        Args:
            session_factory: Async SQLAlchemy session factory.
        """
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Open a session with a transaction that commits on exit.

        Yields:
            AsyncSession: Session bound to the open transaction.
        """
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    @asynccontextmanager
    async def _scope(self, session: AsyncSession | None) -> AsyncIterator[AsyncSession]:
        """Reuse the caller's session or open a fresh transaction."""
        if session is not None:
            yield session
            return
        async with self.transaction() as own_session:
            yield own_session


class VisitRequestRepository(SessionScopedRepository):
    """
    Durable keyed storage for visit requests.

    Supports create, read and compare-and-swap status transitions.
    """

    async def create(
        self,
        visit: VisitRequest,
        session: AsyncSession | None = None,
    ) -> VisitRequest:
        """
        Persist a new visit request.

        Args:
            visit: Domain model to persist.
            session: Optional session owned by the caller.

        Returns:
            VisitRequest: The persisted request.
        """
        async with self._scope(session) as db:
            db.add(
                VisitRequestDB(
                    id=visit.id,
                    mode=visit.mode.value,
                    travel_type=visit.travel_type.value,
                    identity_document_ref=visit.documents.identity_document_ref,
                    vehicle_document_ref=visit.documents.vehicle_document_ref,
                    estate_reference=visit.estate_reference,
                    unit_reference=visit.unit_reference,
                    guest_name=visit.guest_name,
                    guest_contact=visit.guest_contact,
                    guest_purpose=visit.guest_purpose,
                    resident_reference=visit.resident_reference,
                    resident_name=visit.resident_name,
                    status=visit.status.value,
                    created_at=visit.created_at,
                    decided_at=visit.decided_at,
                    expires_at=visit.expires_at,
                    pin_presented=visit.pin_presented,
                    documents_released_at=visit.documents_released_at,
                    version=visit.version,
                )
            )
            await db.flush()

        return visit

    async def get(self, visit_id: str) -> VisitRequest | None:
        """
        Get a visit request by ID.

        Args:
            visit_id: Visit request ID.

        Returns:
            VisitRequest: Domain model if found, None otherwise.
        """
        async with self.transaction() as db:
            result = await db.execute(
                select(VisitRequestDB).where(VisitRequestDB.id == visit_id)
            )
            db_visit = result.scalar_one_or_none()

        if db_visit is None:
            return None

        return self._to_domain(db_visit)

    async def apply_decision(
        self,
        visit_id: str,
        expected_version: int,
        status: VisitStatus,
        decided_at: datetime,
        session: AsyncSession | None = None,
    ) -> bool:
        """
        Move a pending, unexpired request to a decided status.

        Args:
            visit_id: Visit request ID.
            expected_version: Version the caller read.
            status: GRANTED or DENIED.
            decided_at: Decision time, also the expiry cut-off.
            session: Optional session owned by the caller.

        Returns:
            bool: True if this call won the compare-and-swap.
        """
        stmt = (
            update(VisitRequestDB)
            .where(
                VisitRequestDB.id == visit_id,
                VisitRequestDB.version == expected_version,
                VisitRequestDB.status == VisitStatus.PENDING.value,
                VisitRequestDB.expires_at >= decided_at,
            )
            .values(
                status=status.value,
                decided_at=decided_at,
                version=VisitRequestDB.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._scope(session) as db:
            result = await db.execute(stmt)
        return result.rowcount > 0

    async def mark_expired(
        self,
        visit_id: str,
        expected_version: int,
        now: datetime,
    ) -> bool:
        """
        Persist lazily detected expiry of a pending request.

        Never touches a decided request.

        Args:
            visit_id: Visit request ID.
            expected_version: Version the caller read.
            now: Current time.

        Returns:
            bool: True if the record was rewritten.
        """
        stmt = (
            update(VisitRequestDB)
            .where(
                VisitRequestDB.id == visit_id,
                VisitRequestDB.version == expected_version,
                VisitRequestDB.status == VisitStatus.PENDING.value,
                VisitRequestDB.expires_at < now,
            )
            .values(
                status=VisitStatus.EXPIRED.value,
                version=VisitRequestDB.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.transaction() as db:
            result = await db.execute(stmt)
        return result.rowcount > 0

    async def mark_documents_released(self, visit_id: str, released_at: datetime) -> bool:
        """
        Record that a request's document bundle was deleted.

        Returns:
            bool: False if it was already recorded.
        """
        stmt = (
            update(VisitRequestDB)
            .where(
                VisitRequestDB.id == visit_id,
                VisitRequestDB.documents_released_at.is_(None),
            )
            .values(documents_released_at=released_at)
            .execution_options(synchronize_session=False)
        )
        async with self.transaction() as db:
            result = await db.execute(stmt)
        return result.rowcount > 0

    async def list_expired_pending(
        self,
        now: datetime,
        limit: int = 100,
    ) -> Sequence[VisitRequest]:
        """
        List stored-PENDING requests whose window has passed.

        Args:
            now: Current time.
            limit: Maximum entries to return.

        Returns:
            list: Oldest first.
        """
        stmt = (
            select(VisitRequestDB)
            .where(
                VisitRequestDB.status == VisitStatus.PENDING.value,
                VisitRequestDB.expires_at < now,
            )
            .order_by(VisitRequestDB.expires_at.asc())
            .limit(limit)
        )
        return await self._list(stmt)

    async def list_awaiting_release(
        self,
        limit: int = 100,
        after: tuple[datetime, str] | None = None,
    ) -> Sequence[VisitRequest]:
        """
        List terminal requests whose documents have not been released.

        Args:
            limit: Page size.
            after: (created_at, id) of the last row of the previous page.

        Returns:
            list: Oldest first, ordered by (created_at, id).
        """
        stmt = select(VisitRequestDB).where(
            VisitRequestDB.status.in_(TERMINAL_STATUSES),
            VisitRequestDB.documents_released_at.is_(None),
        )
        if after is not None:
            created_at, visit_id = after
            stmt = stmt.where(
                or_(
                    VisitRequestDB.created_at > created_at,
                    and_(
                        VisitRequestDB.created_at == created_at,
                        VisitRequestDB.id > visit_id,
                    ),
                )
            )
        stmt = stmt.order_by(
            VisitRequestDB.created_at.asc(), VisitRequestDB.id.asc()
        ).limit(limit)
        return await self._list(stmt)

    async def list_pending_for_resident(
        self,
        resident_reference: str,
        estate_reference: str,
        now: datetime,
        limit: int = 50,
    ) -> Sequence[VisitRequest]:
        """
        List requests a resident can still decide.

        Args:
            resident_reference: Addressed resident.
            estate_reference: Estate filter.
            now: Current time, requests past their window are excluded.
            limit: Maximum entries to return.

        Returns:
            list: Newest first.
        """
        stmt = (
            select(VisitRequestDB)
            .where(
                VisitRequestDB.resident_reference == resident_reference,
                VisitRequestDB.estate_reference == estate_reference,
                VisitRequestDB.status == VisitStatus.PENDING.value,
                VisitRequestDB.expires_at >= now,
            )
            .order_by(VisitRequestDB.created_at.desc())
            .limit(limit)
        )
        return await self._list(stmt)

    async def list_for_estate(
        self,
        estate_reference: str,
        limit: int = 50,
    ) -> Sequence[VisitRequest]:
        """List an estate's visit history, newest first."""
        stmt = (
            select(VisitRequestDB)
            .where(VisitRequestDB.estate_reference == estate_reference)
            .order_by(VisitRequestDB.created_at.desc())
            .limit(limit)
        )
        return await self._list(stmt)

    async def _list(self, stmt) -> list[VisitRequest]:
        async with self.transaction() as db:
            result = await db.execute(stmt)
            rows = result.scalars().all()
        return [self._to_domain(row) for row in rows]

    def _to_domain(self, db_visit: VisitRequestDB) -> VisitRequest:
        """Convert database model to domain model."""
        return VisitRequest(
            id=db_visit.id,
            mode=VisitMode(db_visit.mode),
            travel_type=TravelType(db_visit.travel_type),
            documents=DocumentBundle(
                identity_document_ref=db_visit.identity_document_ref,
                vehicle_document_ref=db_visit.vehicle_document_ref,
            ),
            estate_reference=db_visit.estate_reference,
            unit_reference=db_visit.unit_reference,
            guest_name=db_visit.guest_name,
            guest_contact=db_visit.guest_contact,
            guest_purpose=db_visit.guest_purpose,
            resident_reference=db_visit.resident_reference,
            resident_name=db_visit.resident_name,
            status=VisitStatus(db_visit.status),
            created_at=db_visit.created_at,
            decided_at=db_visit.decided_at,
            expires_at=db_visit.expires_at,
            pin_presented=db_visit.pin_presented,
            documents_released_at=db_visit.documents_released_at,
            version=db_visit.version,
        )


class AccessCredentialRepository(SessionScopedRepository):
    """
    Durable keyed storage for minted credentials.

    Consumption is an atomic use-once compare-and-swap.
    """

    async def create(
        self,
        credential: AccessCredential,
        session: AsyncSession | None = None,
    ) -> AccessCredential:
        """
        Persist a new credential.

        Args:
            credential: Domain model to persist.
            session: Optional session owned by the caller.

        Returns:
            AccessCredential: The persisted credential.
        """
        async with self._scope(session) as db:
            db.add(
                AccessCredentialDB(
                    id=credential.id,
                    visit_request_id=credential.visit_request_id,
                    token=credential.token,
                    nonce=credential.nonce,
                    issued_at=credential.issued_at,
                    valid_until=credential.valid_until,
                    consumed=credential.consumed,
                    consumed_at=credential.consumed_at,
                )
            )
            await db.flush()

        return credential

    async def get_by_visit_request(self, visit_id: str) -> AccessCredential | None:
        """
        Get the credential minted for a visit request.

        Args:
            visit_id: Visit request ID.

        Returns:
            AccessCredential: Domain model if found, None otherwise.
        """
        async with self.transaction() as db:
            result = await db.execute(
                select(AccessCredentialDB).where(
                    AccessCredentialDB.visit_request_id == visit_id
                )
            )
            db_credential = result.scalar_one_or_none()

        if db_credential is None:
            return None

        return self._to_domain(db_credential)

    async def consume(self, credential_id: str, now: datetime) -> bool:
        """
        Mark a credential as used, exactly once.

        Args:
            credential_id: Credential ID.
            now: Presentation time, also the validity cut-off.

        Returns:
            bool: True only for the single caller that flipped the flag.
        """
        stmt = (
            update(AccessCredentialDB)
            .where(
                AccessCredentialDB.id == credential_id,
                AccessCredentialDB.consumed == False,  # noqa: E712
                AccessCredentialDB.valid_until >= now,
            )
            .values(consumed=True, consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        async with self.transaction() as db:
            result = await db.execute(stmt)
        return result.rowcount > 0

    async def count_for_visit_request(self, visit_id: str) -> int:
        """Number of credentials stored for a visit request."""
        async with self.transaction() as db:
            result = await db.execute(
                select(func.count())
                .select_from(AccessCredentialDB)
                .where(AccessCredentialDB.visit_request_id == visit_id)
            )
            return result.scalar_one()

    def _to_domain(self, db_credential: AccessCredentialDB) -> AccessCredential:
        """Convert database model to domain model."""
        return AccessCredential(
            id=db_credential.id,
            visit_request_id=db_credential.visit_request_id,
            token=db_credential.token,
            nonce=db_credential.nonce,
            issued_at=db_credential.issued_at,
            valid_until=db_credential.valid_until,
            consumed=db_credential.consumed,
            consumed_at=db_credential.consumed_at,
        )


class ResidentRepository(SessionScopedRepository, ResidentDirectory):
    """
    Resident directory backed by the residents table.

    Database failures surface as DependencyError, never as "no resident".
    """

    async def resident_for_unit(
        self,
        unit_reference: str,
        estate_reference: str,
    ) -> Resident | None:
        """
        Resolve the active resident of a unit.

        When a unit has several active residents the earliest
        registered one decides.
        """
        stmt = (
            select(ResidentDB)
            .where(
                ResidentDB.estate_reference == estate_reference,
                ResidentDB.unit_reference == unit_reference,
                ResidentDB.is_active == True,  # noqa: E712
            )
            .order_by(ResidentDB.id.asc())
            .limit(1)
        )
        try:
            async with self.transaction() as db:
                result = await db.execute(stmt)
                db_resident = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("resident_lookup_failed", unit=unit_reference, error=str(e))
            raise DependencyError("Resident directory is unavailable") from e

        if db_resident is None:
            return None

        return self._to_domain(db_resident)

    async def create(self, resident: Resident) -> Resident:
        """Register a resident for a unit."""
        async with self.transaction() as db:
            db.add(
                ResidentDB(
                    resident_reference=resident.reference,
                    name=resident.name,
                    estate_reference=resident.estate_reference,
                    unit_reference=resident.unit_reference,
                    is_active=True,
                )
            )
            await db.flush()
        return resident

    def _to_domain(self, db_resident: ResidentDB) -> Resident:
        """Convert database model to domain model."""
        return Resident(
            reference=db_resident.resident_reference,
            name=db_resident.name,
            unit_reference=db_resident.unit_reference,
            estate_reference=db_resident.estate_reference,
        )


class GateEventRepository(SessionScopedRepository):
    """Repository for the gate presentation audit trail."""

    async def create(self, event: GateEvent) -> GateEvent:
        """
        Record a presentation attempt.

        Args:
            event: Domain model to persist.

        Returns:
            GateEvent: Created entry with ID populated.
        """
        async with self.transaction() as db:
            db_event = GateEventDB(
                visit_request_id=event.visit_request_id,
                scanner_id=event.scanner_id,
                admitted=event.admitted,
                reason=event.reason.value if event.reason else None,
                timestamp=event.timestamp,
            )
            db.add(db_event)
            await db.flush()
            event.id = db_event.id

        return event

    async def list_recent(
        self,
        limit: int = 50,
        visit_request_id: str | None = None,
        scanner_id: str | None = None,
    ) -> Sequence[GateEvent]:
        """
        List recent presentations with optional filters.

        Args:
            limit: Maximum entries to return.
            visit_request_id: Optional visit filter.
            scanner_id: Optional scanner filter.

        Returns:
            list: Newest first.
        """
        stmt = select(GateEventDB).order_by(
            GateEventDB.timestamp.desc(), GateEventDB.id.desc()
        ).limit(limit)

        if visit_request_id:
            stmt = stmt.where(GateEventDB.visit_request_id == visit_request_id)
        if scanner_id:
            stmt = stmt.where(GateEventDB.scanner_id == scanner_id)

        async with self.transaction() as db:
            result = await db.execute(stmt)
            rows = result.scalars().all()
        return [self._to_domain(row) for row in rows]

    def _to_domain(self, db_event: GateEventDB) -> GateEvent:
        """Convert database model to domain model."""
        return GateEvent(
            id=db_event.id,
            visit_request_id=db_event.visit_request_id,
            scanner_id=db_event.scanner_id,
            admitted=db_event.admitted,
            reason=RejectReason(db_event.reason) if db_event.reason else None,
            timestamp=db_event.timestamp,
        )
