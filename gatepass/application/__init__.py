"""Application layer package - use cases and services."""

from gatepass.application.documents import DocumentReleaser
from gatepass.application.expiry_sweep import ExpirySweeper, SweepReport
from gatepass.application.notifications import NotificationRelay, with_retry
from gatepass.application.status_view import StatusView
from gatepass.application.visit_lifecycle import VisitLifecycleEngine

__all__ = [
    "VisitLifecycleEngine",
    "StatusView",
    "NotificationRelay",
    "with_retry",
    "DocumentReleaser",
    "ExpirySweeper",
    "SweepReport",
]
