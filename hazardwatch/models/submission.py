"""Submission request and outcome models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .geo import AddressContext, GeoLocation
from .report import DeviceIdentity, Report, ReportKind


class RejectionReason(str, Enum):
    """Why a submission did not become a stored report."""

    # Hard rejections: deterministic, retry only after the condition changes
    OUTSIDE_HOURS = "OUTSIDE_HOURS"
    HAZARD_ALREADY_NEARBY = "HAZARD_ALREADY_NEARBY"
    NO_HAZARD_NEARBY = "NO_HAZARD_NEARBY"
    ALREADY_VERIFIED_BY_DEVICE = "ALREADY_VERIFIED_BY_DEVICE"
    LOCATION_DRIFTED = "LOCATION_DRIFTED"
    NOT_A_ROAD = "NOT_A_ROAD"

    # Transient: retry with the same submission identity
    ANALYSIS_FAILED = "ANALYSIS_FAILED"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"

    # Soft: a valid outcome, not an error
    LOW_RISK_SOFT_REJECT = "LOW_RISK_SOFT_REJECT"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE

    @property
    def is_soft(self) -> bool:
        return self == RejectionReason.LOW_RISK_SOFT_REJECT


_RETRYABLE = {
    RejectionReason.ANALYSIS_FAILED,
    RejectionReason.STORE_UNAVAILABLE,
    RejectionReason.RATE_LIMITED,
}

REJECTION_MESSAGES = {
    RejectionReason.OUTSIDE_HOURS: (
        "Reports are only accepted between 6:00 AM and 6:00 PM local time for better visibility."
    ),
    RejectionReason.HAZARD_ALREADY_NEARBY: (
        "An existing report is nearby. Verify its repair instead of reporting a new hazard."
    ),
    RejectionReason.NO_HAZARD_NEARBY: (
        "You must be near an open reported hazard to verify its repair."
    ),
    RejectionReason.ALREADY_VERIFIED_BY_DEVICE: (
        "This device already submitted a repair for this hazard. Ask someone on another device to verify."
    ),
    RejectionReason.LOCATION_DRIFTED: (
        "Location mismatch: you moved too far from where the photo was taken. Go back to the site."
    ),
    RejectionReason.NOT_A_ROAD: "The photo does not show a road.",
    RejectionReason.ANALYSIS_FAILED: "Analysis failed. Please try again.",
    RejectionReason.STORE_UNAVAILABLE: "Could not save the report. Please try again.",
    RejectionReason.RATE_LIMITED: "Too many submissions from this device. Please wait and try again.",
    RejectionReason.LOW_RISK_SOFT_REJECT: (
        "Road looks safe. The detected risk is too low to report."
    ),
}


class GateState(str, Enum):
    """States a submission passes through on its way to admission."""
    REQUESTED = "REQUESTED"
    TIME_CHECKED = "TIME_CHECKED"
    PROXIMITY_CHECKED = "PROXIMITY_CHECKED"
    DUPLICATE_CHECKED = "DUPLICATE_CHECKED"
    ANALYZED = "ANALYZED"
    CONFIRMED = "CONFIRMED"
    ADMITTED = "ADMITTED"
    REJECTED = "REJECTED"


class OutcomeStatus(str, Enum):
    ADMITTED = "admitted"
    REJECTED = "rejected"
    SOFT_REJECTED = "soft_rejected"


@dataclass
class SubmissionRequest:
    """
    A proposed hazard or repair submission.

    Attributes:
        report_id: Client-generated id, reused on retries of the same submission
        identity: Submitting device
        kind: Hazard or repair
        captured_location: Location captured with the photo
        live_location: Device location at confirmation time
        now: Device local time
        claimed_location: Location checked by the new-hazard exclusion rule
            (defaults to the captured location)
        target_hazard_id: Hazard a repair is verifying; when absent the
            nearest open hazard in range is used
        address_context: Optional advisory place metadata
    """
    report_id: str
    identity: DeviceIdentity
    kind: ReportKind
    captured_location: GeoLocation
    live_location: GeoLocation
    now: datetime
    claimed_location: Optional[GeoLocation] = None
    target_hazard_id: Optional[str] = None
    address_context: Optional[AddressContext] = None

    def __post_init__(self):
        if self.claimed_location is None:
            self.claimed_location = self.captured_location
        if self.kind == ReportKind.HAZARD:
            self.target_hazard_id = None

    @property
    def device_id(self) -> str:
        return self.identity.device_id


@dataclass
class GateDecision:
    """
    Result of running the admission gate.

    Attributes:
        admitted: Whether every rule passed
        reason: First failing rule, when not admitted
        trail: States reached, in order
        target_hazard: Hazard a repair was matched to
        distance_m: Distance that decided the proximity rule, when computed
    """
    admitted: bool
    reason: Optional[RejectionReason] = None
    trail: List[GateState] = field(default_factory=list)
    target_hazard: Optional[Report] = None
    distance_m: Optional[float] = None


@dataclass
class SubmissionOutcome:
    """
    What happened to a submission.

    Attributes:
        status: Admitted, rejected or soft-rejected
        reason: Rejection reason, absent when admitted
        message: User-facing explanation
        retryable: Whether the same submission may simply be retried
        report: Stored report when admitted
        analysis: Oracle payload, when analysis ran
        trail: Gate states reached
        details: Extra diagnostics (distances, hazard ids)
    """
    status: OutcomeStatus
    reason: Optional[RejectionReason] = None
    message: str = ""
    retryable: bool = False
    report: Optional[Report] = None
    analysis: Optional[Dict[str, Any]] = None
    trail: List[GateState] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def admitted(self) -> bool:
        return self.status == OutcomeStatus.ADMITTED

    @classmethod
    def admit(cls, report: Report, trail: List[GateState], message: str = "Report submitted.") -> "SubmissionOutcome":
        return cls(
            status=OutcomeStatus.ADMITTED,
            message=message,
            report=report,
            analysis=report.analysis,
            trail=list(trail) + [GateState.ADMITTED],
        )

    @classmethod
    def reject(
        cls,
        reason: RejectionReason,
        trail: Optional[List[GateState]] = None,
        analysis: Optional[Dict[str, Any]] = None,
        message: Optional[str] = None,
        **details: Any
    ) -> "SubmissionOutcome":
        status = OutcomeStatus.SOFT_REJECTED if reason.is_soft else OutcomeStatus.REJECTED
        return cls(
            status=status,
            reason=reason,
            message=message or REJECTION_MESSAGES[reason],
            retryable=reason.retryable,
            analysis=analysis,
            trail=list(trail or []) + [GateState.REJECTED],
            details=details,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "retryable": self.retryable,
            "report": self.report.to_dict() if self.report else None,
            "analysis": self.analysis,
            "trail": [state.value for state in self.trail],
            "details": self.details,
        }
