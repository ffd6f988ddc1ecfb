"""Shared test fixtures: an offline forensics oracle and report builders."""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from hazardwatch.lifecycle.engine import LifecycleEngine
from hazardwatch.models import (
    DeviceIdentity,
    GeoLocation,
    HazardAnalysis,
    RepairAudit,
    Report,
    ReportKind,
    SubmissionRequest,
)
from hazardwatch.plugins.forensics import ForensicsOracle, parse_repair_audit, parse_triage
from hazardwatch.storage.file_storage import FileStorage
from hazardwatch.storage.report_store import ReportStore
from hazardwatch.utils.geo import offset_location

ORIGIN = GeoLocation(lat=12.9716, lng=77.5946, accuracy_m=5.0)
DAYTIME = datetime(2026, 3, 10, 10, 30)
NIGHT = datetime(2026, 3, 10, 21, 0)
PHOTO = b"\xff\xd8\xff\xe0fake-jpeg-bytes"


def near(north_m: float = 0.0, east_m: float = 0.0, origin: GeoLocation = ORIGIN) -> GeoLocation:
    lat, lng = offset_location(origin.lat, origin.lng, north_m=north_m, east_m=east_m)
    return GeoLocation(lat=lat, lng=lng, accuracy_m=origin.accuracy_m)


def triage_payload(score: Optional[Any] = 75, is_road: bool = True, **extra: Any) -> Dict[str, Any]:
    payload = {
        "is_road": is_road,
        "hazard_detected": True,
        "hazard_type": "pothole",
        "severity": "High",
        "accident_probability_score": score,
        "repair_info": {"estimated_cost_inr": "4500"},
    }
    payload.update(extra)
    return payload


def audit_payload(status: str = "GENUINE_REPAIR", is_road: bool = True) -> Dict[str, Any]:
    return {
        "is_road": is_road,
        "hazard_detected": False,
        "repair_quality_audit": {
            "status": status,
            "evidence": "surface patched, kerb and tree line match",
            "verification_score": 90,
            "match_confidence": 85,
        },
    }


class FakeOracle(ForensicsOracle):
    """Answers from canned payloads and records every call."""

    def __init__(
        self,
        triage: Optional[Dict[str, Any]] = None,
        audit: Optional[Dict[str, Any]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None
    ):
        self.triage = triage if triage is not None else triage_payload()
        self.audit = audit if audit is not None else audit_payload()
        self.delay = delay
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def _respond(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    async def triage_hazard(self, photo: bytes, location_context: str) -> HazardAnalysis:
        self.calls.append({"verb": "triage", "photo": photo, "context": location_context})
        await self._respond()
        return parse_triage(self.triage)

    async def verify_repair(
        self,
        new_photo: bytes,
        original_photo: Optional[bytes],
        location_context: str
    ) -> RepairAudit:
        self.calls.append({
            "verb": "repair",
            "photo": new_photo,
            "original": original_photo,
            "context": location_context,
        })
        await self._respond()
        return parse_repair_audit(self.audit)


class StepClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: float = 1_773_000_000.0):
        self.now = start

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


def hazard_report(
    report_id: str,
    location: GeoLocation = ORIGIN,
    device_id: str = "dev-reporter",
    timestamp: int = 1_000,
    **fields: Any
) -> Report:
    return Report(
        id=report_id,
        device_id=device_id,
        kind=ReportKind.HAZARD,
        location=location,
        timestamp=timestamp,
        analysis=fields.pop("analysis", triage_payload()),
        **fields
    )


def repair_report(
    report_id: str,
    device_id: str,
    parent_report_id: Optional[str] = None,
    location: GeoLocation = ORIGIN,
    status: Optional[str] = "GENUINE_REPAIR",
    timestamp: int = 2_000
) -> Report:
    analysis = audit_payload(status) if status is not None else {}
    return Report(
        id=report_id,
        device_id=device_id,
        kind=ReportKind.REPAIR,
        location=location,
        timestamp=timestamp,
        analysis=analysis,
        parent_report_id=parent_report_id,
    )


def hazard_request(
    report_id: str,
    device_id: str = "dev-reporter",
    location: GeoLocation = ORIGIN,
    live: Optional[GeoLocation] = None,
    now: datetime = DAYTIME
) -> SubmissionRequest:
    return SubmissionRequest(
        report_id=report_id,
        identity=DeviceIdentity(device_id=device_id),
        kind=ReportKind.HAZARD,
        captured_location=location,
        live_location=live or location,
        now=now,
    )


def repair_request(
    report_id: str,
    device_id: str,
    target_hazard_id: Optional[str] = None,
    location: GeoLocation = ORIGIN,
    live: Optional[GeoLocation] = None,
    now: datetime = DAYTIME
) -> SubmissionRequest:
    return SubmissionRequest(
        report_id=report_id,
        identity=DeviceIdentity(device_id=device_id),
        kind=ReportKind.REPAIR,
        captured_location=location,
        live_location=live or location,
        now=now,
        target_hazard_id=target_hazard_id,
    )


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def store() -> ReportStore:
    return ReportStore()


@pytest.fixture
def file_storage(tmp_path) -> FileStorage:
    return FileStorage(str(tmp_path / "uploads"))


@pytest.fixture
def engine(store, oracle, file_storage) -> LifecycleEngine:
    return LifecycleEngine(store=store, oracle=oracle, file_storage=file_storage, clock=StepClock())
