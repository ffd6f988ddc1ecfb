"""Forensics oracle verdict models.

The oracle answers with free-form JSON. These classes are the only place
that JSON is interpreted: required fields are validated strictly, optional
ones degrade to conservative defaults, unknown keys are kept in ``raw``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .report import AuditStatus


def _coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _coerce_score(value: Any, low: int = 0, high: int = 100) -> Optional[int]:
    """Integer score within [low, high], or None when absent or unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score != score or not low <= score <= high:
        return None
    return int(round(score))


@dataclass
class HazardAnalysis:
    """
    Triage verdict for a hazard photo.

    Attributes:
        is_road: Whether the photo shows road infrastructure
        hazard_detected: Whether a defect was found
        accident_probability_score: 0-100 risk score, None when not usable
        severity: Free-text severity label
        hazard_type: Free-text hazard type
        raw: Full oracle payload including unknown fields
    """
    is_road: bool
    hazard_detected: bool
    accident_probability_score: Optional[int] = None
    severity: str = "Unknown"
    hazard_type: str = "hazard"
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "HazardAnalysis":
        """
        Validate a triage payload.

        Raises:
            ValueError: If ``is_road`` or ``hazard_detected`` is missing or not boolean
        """
        if not isinstance(payload, dict):
            raise ValueError("triage payload is not an object")

        is_road = _coerce_bool(payload.get("is_road"))
        if is_road is None:
            raise ValueError("is_road missing or not boolean")

        hazard_detected = _coerce_bool(payload.get("hazard_detected"))
        if hazard_detected is None:
            raise ValueError("hazard_detected missing or not boolean")

        return cls(
            is_road=is_road,
            hazard_detected=hazard_detected,
            accident_probability_score=_coerce_score(payload.get("accident_probability_score")),
            severity=str(payload.get("severity") or "Unknown"),
            hazard_type=str(payload.get("hazard_type") or "hazard"),
            raw=dict(payload),
        )


@dataclass
class RepairAudit:
    """
    Forensic comparison verdict for a repair photo.

    Attributes:
        status: Audit outcome
        evidence: Oracle's explanation
        verification_score: 0-100, None when not usable
        match_confidence: 0-100 location match with the original photo, None when not usable
        is_road: Whether the photo shows road infrastructure
        raw: Full oracle payload including unknown fields
    """
    status: AuditStatus
    evidence: str = ""
    verification_score: Optional[int] = None
    match_confidence: Optional[int] = None
    is_road: bool = True
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_genuine(self) -> bool:
        return self.status == AuditStatus.GENUINE_REPAIR

    @classmethod
    def from_payload(cls, payload: Any) -> "RepairAudit":
        """
        Validate a repair audit payload.

        Raises:
            ValueError: If ``is_road`` is missing or not boolean, or
                ``repair_quality_audit.status`` is missing or unknown
        """
        if not isinstance(payload, dict):
            raise ValueError("repair payload is not an object")

        audit = payload.get("repair_quality_audit")
        if not isinstance(audit, dict):
            raise ValueError("repair_quality_audit missing")

        status = AuditStatus.parse(audit.get("status"))
        if status is None:
            raise ValueError(f"unknown audit status: {audit.get('status')!r}")

        is_road = _coerce_bool(payload.get("is_road"))
        if is_road is None:
            raise ValueError("is_road missing or not boolean")

        normalized = dict(payload)
        normalized["repair_quality_audit"] = dict(audit, status=status.value)

        return cls(
            status=status,
            evidence=str(audit.get("evidence") or ""),
            verification_score=_coerce_score(audit.get("verification_score")),
            match_confidence=_coerce_score(audit.get("match_confidence")),
            is_road=is_road,
            raw=normalized,
        )
