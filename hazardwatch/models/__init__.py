"""Data models for reports, oracle verdicts, derived status and submissions."""

from .geo import AddressContext, BoundingBox, GeoLocation
from .report import AuditStatus, DeviceIdentity, Report, ReportKind
from .analysis import HazardAnalysis, RepairAudit
from .status import HazardState, HazardStatus, HazardView
from .submission import (
    GateDecision,
    GateState,
    OutcomeStatus,
    RejectionReason,
    SubmissionOutcome,
    SubmissionRequest,
)

__all__ = [
    "AddressContext",
    "BoundingBox",
    "GeoLocation",
    "AuditStatus",
    "DeviceIdentity",
    "Report",
    "ReportKind",
    "HazardAnalysis",
    "RepairAudit",
    "HazardState",
    "HazardStatus",
    "HazardView",
    "GateDecision",
    "GateState",
    "OutcomeStatus",
    "RejectionReason",
    "SubmissionOutcome",
    "SubmissionRequest",
]
