"""
SQLAlchemy ORM models for database tables.

These models define the database schema and provide
persistence for domain entities.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ResidentDB(Base):
    """
    Database model backing the resident directory.

    Maps an estate unit to the resident who decides its visits.
    Supports soft delete via is_active flag.
    """

    __tablename__ = "residents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    resident_reference: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    estate_reference: Mapped[str] = mapped_column(String(64), nullable=False)
    unit_reference: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_residents_estate_unit", "estate_reference", "unit_reference", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Resident(ref={self.resident_reference}, unit={self.unit_reference})>"


class VisitRequestDB(Base):
    """
    Database model for visit requests.

    The version column is the compare-and-swap guard for every
    status transition.
    """

    __tablename__ = "visit_requests"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    mode: Mapped[str] = mapped_column(String(8), nullable=False)
    travel_type: Mapped[str] = mapped_column(String(16), nullable=False)
    identity_document_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    vehicle_document_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    estate_reference: Mapped[str] = mapped_column(String(64), nullable=False)
    unit_reference: Mapped[str] = mapped_column(String(32), nullable=False)
    guest_name: Mapped[str] = mapped_column(String(150), nullable=False)
    guest_contact: Mapped[str] = mapped_column(String(100), nullable=False)
    guest_purpose: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resident_reference: Mapped[str] = mapped_column(String(64), nullable=False)
    resident_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    pin_presented: Mapped[str | None] = mapped_column(String(32), nullable=True)
    documents_released_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_visit_requests_resident_status", "resident_reference", "estate_reference", "status"),
        Index("ix_visit_requests_estate_created", "estate_reference", "created_at"),
        Index("ix_visit_requests_status_expiry", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<VisitRequest(id={self.id}, status={self.status}, v={self.version})>"


class AccessCredentialDB(Base):
    """
    Database model for minted access credentials.

    The unique constraint on visit_request_id makes a second
    credential for the same visit impossible.
    """

    __tablename__ = "access_credentials"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    visit_request_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("visit_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    token: Mapped[str] = mapped_column(Text, nullable=False)
    nonce: Mapped[str] = mapped_column(String(64), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    consumed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("visit_request_id", name="uq_access_credentials_visit"),
    )

    def __repr__(self) -> str:
        return f"<AccessCredential(visit={self.visit_request_id}, consumed={self.consumed})>"


class GateEventDB(Base):
    """
    Database model for gate presentation audit entries.

    Records every token presented at a gate, admitted or not.
    """

    __tablename__ = "gate_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    visit_request_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    scanner_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    admitted: Mapped[bool] = mapped_column(Boolean, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(16), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<GateEvent(visit={self.visit_request_id}, admitted={self.admitted})>"
