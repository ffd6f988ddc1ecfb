"""End-to-end tests for the lifecycle engine with an offline oracle."""

import asyncio
import json
import logging
import threading

import pytest

from hazardwatch.lifecycle.engine import LifecycleEngine
from hazardwatch.lifecycle.policy import FixedWindowRateLimiter
from hazardwatch.models import (
    AddressContext,
    GateState,
    HazardState,
    OutcomeStatus,
    RejectionReason,
)
from hazardwatch.storage.report_store import ReportStore
from hazardwatch.utils.config import EngineConfig
from hazardwatch.utils.errors import AnalysisError, StoreError
from hazardwatch.utils.logging import ContextFilter

from conftest import (
    NIGHT,
    ORIGIN,
    PHOTO,
    FakeOracle,
    StepClock,
    audit_payload,
    hazard_request,
    near,
    repair_request,
    triage_payload,
)


async def _report_hazard(engine, report_id="h1", location=ORIGIN, device_id="dev-reporter"):
    outcome = await engine.submit(hazard_request(report_id, device_id, location), PHOTO, "pothole.jpg")
    assert outcome.admitted, outcome.to_dict()
    return outcome.report


@pytest.mark.asyncio
async def test_hazard_is_admitted_and_stored(engine, store, file_storage, oracle):
    outcome = await engine.submit(hazard_request("h1"), PHOTO, "pothole.jpg")

    assert outcome.status == OutcomeStatus.ADMITTED
    assert outcome.trail[-3:] == [GateState.ANALYZED, GateState.CONFIRMED, GateState.ADMITTED]
    assert store.get("h1") is outcome.report
    assert outcome.report.image_ref == "h1/photos/pothole.jpg"
    assert file_storage.load_photo(outcome.report.image_ref) == PHOTO
    assert outcome.report.analysis["accident_probability_score"] == 75
    assert "DEVICE_ID: dev-reporter" in oracle.calls[0]["context"]


@pytest.mark.asyncio
async def test_duplicate_hazard_nearby_is_rejected_without_analysis(engine, oracle):
    # New report a few meters from an open hazard
    await _report_hazard(engine)
    outcome = await engine.submit(hazard_request("h2", "dev-other", near(north_m=8)), PHOTO)

    assert outcome.reason == RejectionReason.HAZARD_ALREADY_NEARBY
    assert not outcome.retryable
    assert outcome.details["distance_m"] == pytest.approx(8.0, abs=0.1)
    assert len(oracle.calls) == 1


@pytest.mark.asyncio
async def test_outside_hours_uses_configured_window_message(engine):
    outcome = await engine.submit(hazard_request("h1", now=NIGHT), PHOTO)

    assert outcome.reason == RejectionReason.OUTSIDE_HOURS
    assert "06:00" in outcome.message and "18:00" in outcome.message


@pytest.mark.asyncio
async def test_low_risk_hazard_is_soft_rejected(store, file_storage):
    engine = LifecycleEngine(store, FakeOracle(triage=triage_payload(score=25)), file_storage)
    outcome = await engine.submit(hazard_request("h1"), PHOTO)

    assert outcome.status == OutcomeStatus.SOFT_REJECTED
    assert outcome.reason == RejectionReason.LOW_RISK_SOFT_REJECT
    assert not outcome.retryable
    assert outcome.analysis["accident_probability_score"] == 25
    assert len(store) == 0
    assert file_storage.list_photos("h1") == []


@pytest.mark.asyncio
async def test_missing_score_is_not_soft_rejected(store):
    engine = LifecycleEngine(store, FakeOracle(triage=triage_payload(score=None)))

    assert (await engine.submit(hazard_request("h1"), PHOTO)).admitted


@pytest.mark.asyncio
async def test_out_of_range_score_is_treated_as_missing(store):
    engine = LifecycleEngine(store, FakeOracle(triage=triage_payload(score=250)))

    assert (await engine.submit(hazard_request("h1"), PHOTO)).admitted


@pytest.mark.asyncio
async def test_not_a_road_is_rejected(store):
    engine = LifecycleEngine(store, FakeOracle(triage=triage_payload(is_road=False)))
    outcome = await engine.submit(hazard_request("h1"), PHOTO)

    assert outcome.reason == RejectionReason.NOT_A_ROAD
    assert len(store) == 0


@pytest.mark.asyncio
async def test_consensus_resolves_after_three_devices(engine, store, oracle):
    # Three independent genuine repairs resolve the hazard
    hazard = await _report_hazard(engine)

    for i, device in enumerate(["dev-a", "dev-b", "dev-c"], start=1):
        outcome = await engine.submit(repair_request(f"r{i}", device, hazard.id, near(north_m=5)), PHOTO)
        assert outcome.admitted
        assert outcome.report.parent_report_id == hazard.id
        view = engine.get_hazard(hazard.id)
        assert view.verification_count == i

    assert engine.get_hazard(hazard.id).status.state == HazardState.RESOLVED
    assert engine.list_hazards() == []
    assert [v.hazard.id for v in engine.list_resolved()] == [hazard.id]

    history = engine.get_history(hazard.id)
    assert [r.id for r in history] == [hazard.id, "r1", "r2", "r3"]


@pytest.mark.asyncio
async def test_repair_compares_against_original_photo(engine, oracle):
    hazard = await _report_hazard(engine)
    await engine.submit(repair_request("r1", "dev-a", hazard.id), b"\x89PNG\r\n\x1a\nrepair")

    assert oracle.calls[-1]["verb"] == "repair"
    assert oracle.calls[-1]["original"] == PHOTO


@pytest.mark.asyncio
async def test_repair_audits_alone_when_original_photo_missing(engine, oracle, file_storage):
    hazard = await _report_hazard(engine)
    file_storage.delete_report_uploads(hazard.id)

    outcome = await engine.submit(repair_request("r1", "dev-a", hazard.id), PHOTO)

    assert outcome.admitted
    assert oracle.calls[-1]["original"] is None


@pytest.mark.asyncio
async def test_second_attempt_from_same_device_is_rejected(engine, oracle):
    hazard = await _report_hazard(engine)
    oracle.audit = audit_payload("NOT_REPAIRED")
    first = await engine.submit(repair_request("r1", "dev-a", hazard.id), PHOTO)
    assert first.admitted

    oracle.audit = audit_payload("GENUINE_REPAIR")
    second = await engine.submit(repair_request("r2", "dev-a", hazard.id), PHOTO)

    assert second.reason == RejectionReason.ALREADY_VERIFIED_BY_DEVICE
    assert engine.get_hazard(hazard.id).status.state == HazardState.ACTIVE


@pytest.mark.asyncio
async def test_drifted_repair_is_rejected_after_analysis(engine, store):
    hazard = await _report_hazard(engine)
    request = repair_request("r1", "dev-a", hazard.id, location=near(north_m=-45), live=near(north_m=10))

    outcome = await engine.submit(request, PHOTO)

    assert outcome.reason == RejectionReason.LOCATION_DRIFTED
    assert outcome.details["drift_m"] == pytest.approx(55.0, abs=0.1)
    assert GateState.ANALYZED in outcome.trail
    assert store.get("r1") is None


@pytest.mark.asyncio
async def test_oracle_timeout_is_retryable_and_stores_nothing(store, file_storage):
    engine = LifecycleEngine(
        store,
        FakeOracle(delay=0.5),
        file_storage,
        config=EngineConfig(oracle_timeout_seconds=0.05),
    )
    outcome = await engine.submit(hazard_request("h1"), PHOTO)

    assert outcome.reason == RejectionReason.ANALYSIS_FAILED
    assert outcome.retryable
    assert len(store) == 0
    assert file_storage.list_photos("h1") == []


@pytest.mark.asyncio
async def test_malformed_triage_fails_closed(store):
    engine = LifecycleEngine(store, FakeOracle(triage={"severity": "High"}))
    outcome = await engine.submit(hazard_request("h1"), PHOTO)

    assert outcome.reason == RejectionReason.ANALYSIS_FAILED
    assert outcome.retryable
    assert "is_road" in outcome.details["error"]


@pytest.mark.asyncio
async def test_malformed_repair_audit_is_never_stored(engine, store, oracle):
    hazard = await _report_hazard(engine)
    oracle.audit = {"is_road": True, "repair_quality_audit": {"status": "LOOKS_FINE"}}

    outcome = await engine.submit(repair_request("r1", "dev-a", hazard.id), PHOTO)

    assert outcome.reason == RejectionReason.ANALYSIS_FAILED
    assert store.get("r1") is None


@pytest.mark.asyncio
async def test_repair_audit_without_is_road_fails_closed(engine, store, oracle):
    hazard = await _report_hazard(engine)
    oracle.audit = audit_payload()
    del oracle.audit["is_road"]

    outcome = await engine.submit(repair_request("r1", "dev-a", hazard.id), PHOTO)

    assert not outcome.admitted
    assert outcome.reason == RejectionReason.ANALYSIS_FAILED
    assert outcome.retryable
    assert "is_road" in outcome.details["error"]
    assert store.get("r1") is None


@pytest.mark.asyncio
async def test_oracle_outage_is_retryable(store):
    error = AnalysisError.unavailable("triage_hazard", RuntimeError("connection reset"))
    engine = LifecycleEngine(store, FakeOracle(error=error))

    outcome = await engine.submit(hazard_request("h1"), PHOTO)

    assert outcome.reason == RejectionReason.ANALYSIS_FAILED
    assert outcome.retryable


@pytest.mark.asyncio
async def test_store_failure_rolls_back_photo(store, file_storage, monkeypatch):
    engine = LifecycleEngine(store, FakeOracle(), file_storage)

    def broken_append(report):
        raise StoreError.unavailable("append", OSError("disk full"))

    monkeypatch.setattr(store, "append", broken_append)
    outcome = await engine.submit(hazard_request("h1"), PHOTO)

    assert outcome.reason == RejectionReason.STORE_UNAVAILABLE
    assert outcome.retryable
    assert file_storage.list_photos("h1") == []


@pytest.mark.asyncio
async def test_commit_runs_off_the_event_loop_thread(store, monkeypatch):
    engine = LifecycleEngine(store, FakeOracle())
    append = store.append
    threads = []

    def recording_append(report):
        threads.append(threading.get_ident())
        return append(report)

    monkeypatch.setattr(store, "append", recording_append)
    outcome = await engine.submit(hazard_request("h1"), PHOTO)

    assert outcome.admitted
    assert len(threads) == 1
    assert threads[0] != threading.get_ident()


class ContextRecordingOracle(FakeOracle):
    """Captures the log context visible while each triage is in flight."""

    def __init__(self):
        super().__init__(delay=0.01)
        self.seen = {}

    async def triage_hazard(self, photo, location_context):
        analysis = await super().triage_hazard(photo, location_context)
        record = logging.LogRecord("hazardwatch", logging.INFO, __file__, 0, "triage", None, None)
        ContextFilter().filter(record)
        self.seen[record.report_id] = record.device_id
        return analysis


@pytest.mark.asyncio
async def test_log_context_is_isolated_per_submission(store):
    oracle = ContextRecordingOracle()
    engine = LifecycleEngine(store, oracle)

    await asyncio.gather(
        engine.submit(hazard_request("h1", "dev-a", ORIGIN), PHOTO),
        engine.submit(hazard_request("h2", "dev-b", near(north_m=500)), PHOTO),
    )

    assert oracle.seen == {"h1": "dev-a", "h2": "dev-b"}


@pytest.mark.asyncio
async def test_log_context_is_dropped_after_submission(store):
    engine = LifecycleEngine(store, FakeOracle())
    await engine.submit(hazard_request("h1", "dev-a", ORIGIN), PHOTO)

    record = logging.LogRecord("hazardwatch", logging.INFO, __file__, 0, "after", None, None)
    ContextFilter().filter(record)

    assert not hasattr(record, "device_id")
    assert not hasattr(record, "component")


@pytest.mark.asyncio
async def test_retry_with_same_report_id_is_idempotent(engine, store, oracle):
    first = await engine.submit(hazard_request("h1"), PHOTO)
    retry = await engine.submit(hazard_request("h1"), PHOTO)

    assert retry.admitted
    assert retry.report is first.report
    assert len(store) == 1
    assert len(oracle.calls) == 1


@pytest.mark.asyncio
async def test_report_id_reused_by_other_device_raises(engine):
    await _report_hazard(engine)

    with pytest.raises(StoreError):
        await engine.submit(hazard_request("h1", "dev-other", near(north_m=500)), PHOTO)


@pytest.mark.asyncio
async def test_concurrent_repairs_from_same_device_admit_only_one(engine, store, oracle):
    hazard = await _report_hazard(engine)
    oracle.delay = 0.01

    outcomes = await asyncio.gather(
        engine.submit(repair_request("r1", "dev-a", hazard.id), PHOTO),
        engine.submit(repair_request("r2", "dev-a", hazard.id), PHOTO),
    )

    assert sorted(o.admitted for o in outcomes) == [False, True]
    rejected = next(o for o in outcomes if not o.admitted)
    assert rejected.reason == RejectionReason.ALREADY_VERIFIED_BY_DEVICE
    assert len(store.repairs()) == 1


@pytest.mark.asyncio
async def test_concurrent_repairs_from_different_devices_all_count(engine, oracle):
    hazard = await _report_hazard(engine)
    oracle.delay = 0.01

    outcomes = await asyncio.gather(*[
        engine.submit(repair_request(f"r{i}", f"dev-{i}", hazard.id), PHOTO)
        for i in range(3)
    ])

    assert all(o.admitted for o in outcomes)
    assert engine.get_hazard(hazard.id).status.state == HazardState.RESOLVED


@pytest.mark.asyncio
async def test_rate_limited_device_is_told_to_retry(store):
    engine = LifecycleEngine(store, FakeOracle(), rate_limiter=FixedWindowRateLimiter(900, 1))
    await engine.submit(hazard_request("h1"), PHOTO)

    outcome = await engine.submit(hazard_request("h2", location=near(north_m=300)), PHOTO)

    assert outcome.reason == RejectionReason.RATE_LIMITED
    assert outcome.retryable


@pytest.mark.asyncio
async def test_cached_address_is_reused_for_nearby_report(engine, oracle):
    address = AddressContext(
        city="Bengaluru",
        district="Bangalore Urban",
        state="Karnataka",
        formatted_address="MG Road, Bengaluru",
    )
    request = hazard_request("h1")
    request.address_context = address
    await engine.submit(request, PHOTO)

    outcome = await engine.submit(hazard_request("h2", location=near(north_m=35)), PHOTO)

    assert outcome.report.address_context == address
    assert "Verified Location: MG Road, Bengaluru" in oracle.calls[-1]["context"]


@pytest.mark.asyncio
async def test_nearest_open_hazard_drives_repair_unlock(engine):
    hazard = await _report_hazard(engine)

    match = engine.nearest_open_hazard(near(north_m=15))
    assert match.hazard.id == hazard.id
    assert engine.nearest_open_hazard(near(north_m=25)) is None


@pytest.mark.asyncio
async def test_persisted_store_survives_restart(tmp_path):
    path = tmp_path / "reports.jsonl"
    engine = LifecycleEngine(ReportStore(str(path)), FakeOracle(), clock=StepClock())
    await engine.submit(hazard_request("h1"), PHOTO)
    await engine.submit(repair_request("r1", "dev-a", "h1"), PHOTO)

    reloaded = LifecycleEngine(ReportStore(str(path)), FakeOracle())

    assert reloaded.get_hazard("h1").verification_count == 1
    lines = path.read_text().strip().splitlines()
    assert [json.loads(line)["kind"] for line in lines] == ["hazard", "repair"]
