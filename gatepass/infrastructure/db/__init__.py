"""Database infrastructure package."""

from gatepass.infrastructure.db.models import (
    AccessCredentialDB,
    Base,
    GateEventDB,
    ResidentDB,
    VisitRequestDB,
)
from gatepass.infrastructure.db.repository import (
    AccessCredentialRepository,
    GateEventRepository,
    ResidentRepository,
    VisitRequestRepository,
)
from gatepass.infrastructure.db.session import (
    build_session_factory,
    close_db,
    get_session_factory,
    init_db,
)

__all__ = [
    # Models
    "Base",
    "ResidentDB",
    "VisitRequestDB",
    "AccessCredentialDB",
    "GateEventDB",
    # Repositories
    "VisitRequestRepository",
    "AccessCredentialRepository",
    "ResidentRepository",
    "GateEventRepository",
    # Session
    "build_session_factory",
    "get_session_factory",
    "init_db",
    "close_db",
]
