"""Report data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .geo import AddressContext, GeoLocation


class ReportKind(str, Enum):
    """Kind of a stored report. Immutable once created."""
    HAZARD = "hazard"
    REPAIR = "repair"


class AuditStatus(str, Enum):
    """Forensic verdict attached to a repair report."""
    GENUINE_REPAIR = "GENUINE_REPAIR"
    FAKE_COVERUP = "FAKE_COVERUP"
    POOR_QUALITY = "POOR_QUALITY"
    NOT_REPAIRED = "NOT_REPAIRED"
    LOCATION_MISMATCH = "LOCATION_MISMATCH"

    @classmethod
    def parse(cls, value: Any) -> Optional["AuditStatus"]:
        """Return the matching status, or None for anything unrecognised."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


@dataclass(frozen=True)
class DeviceIdentity:
    """
    Identity of the submitting installation.

    Attributes:
        device_id: Stable per-installation identifier, the unit of dedup
        user_id: Optional authenticated user (owned by the auth layer)
    """
    device_id: str
    user_id: Optional[str] = None


@dataclass
class Report:
    """
    A stored hazard or repair report. Never mutated after append.

    Attributes:
        id: Client-generated opaque key
        device_id: Submitting installation
        kind: Hazard or repair
        location: Location captured with the photo
        timestamp: Submission instant in epoch milliseconds
        analysis: Oracle verdict payload (triage for hazards, audit for repairs)
        user_id: Optional authenticated identity
        parent_report_id: Hazard a repair claims to fix (absent on legacy data)
        address_context: Advisory place metadata
        image_ref: Reference to the stored evidence photo
    """
    id: str
    device_id: str
    kind: ReportKind
    location: GeoLocation
    timestamp: int
    analysis: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    parent_report_id: Optional[str] = None
    address_context: Optional[AddressContext] = None
    image_ref: Optional[str] = None

    @property
    def is_hazard(self) -> bool:
        return self.kind == ReportKind.HAZARD

    @property
    def is_repair(self) -> bool:
        return self.kind == ReportKind.REPAIR

    def audit_status(self) -> Optional[AuditStatus]:
        """
        Audit status of a repair, or None when missing or malformed.

        Hazards always return None: any audit block they carry is the
        triage model echoing its schema and never counts toward consensus.
        """
        if not self.is_repair or not isinstance(self.analysis, dict):
            return None
        audit = self.analysis.get("repair_quality_audit")
        if not isinstance(audit, dict):
            return None
        return AuditStatus.parse(audit.get("status"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "user_id": self.user_id,
            "kind": self.kind.value,
            "parent_report_id": self.parent_report_id,
            "location": self.location.to_dict(),
            "timestamp": self.timestamp,
            "analysis": self.analysis,
            "address_context": self.address_context.to_dict() if self.address_context else None,
            "image_ref": self.image_ref,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Report":
        """
        Rebuild a report from its stored form.

        Legacy records without a kind (``reportType`` absent) are hazards,
        matching how they were always displayed.

        Raises:
            ValueError: If the record lacks an id, device or location
        """
        if not isinstance(data, dict):
            raise ValueError("report record must be an object")
        report_id = data.get("id")
        if not report_id:
            raise ValueError("report record has no id")

        raw_kind = data.get("kind", data.get("reportType")) or ReportKind.HAZARD.value
        kind = ReportKind(str(raw_kind).lower())

        address = data.get("address_context", data.get("addressContext"))
        analysis = data.get("analysis")

        return cls(
            id=str(report_id),
            device_id=str(data.get("device_id", data.get("deviceId")) or "unknown"),
            user_id=data.get("user_id", data.get("userId")),
            kind=kind,
            parent_report_id=data.get("parent_report_id", data.get("parentReportId")),
            location=GeoLocation.from_dict(data.get("location")),
            timestamp=int(data.get("timestamp") or 0),
            analysis=analysis if isinstance(analysis, dict) else {},
            address_context=AddressContext.from_dict(address) if isinstance(address, dict) else None,
            image_ref=data.get("image_ref", data.get("image")),
        )
