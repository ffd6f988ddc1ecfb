"""Tests for the JSON Lines report store and evidence photo storage."""

import json

import pytest

from hazardwatch.models import BoundingBox, Report, ReportKind
from hazardwatch.storage.file_storage import FileStorage
from hazardwatch.storage.report_store import ReportQuery, ReportStore
from hazardwatch.utils.errors import ErrorType, StoreError

from conftest import ORIGIN, hazard_report, near, repair_report


def test_append_persists_and_reloads(tmp_path):
    path = tmp_path / "reports.jsonl"
    store = ReportStore(str(path))
    store.append(hazard_report("h1"))
    store.append(repair_report("r1", "dev-a", "h1"))

    reloaded = ReportStore(str(path))

    assert [r.id for r in reloaded.snapshot()] == ["h1", "r1"]
    assert reloaded.get("r1").parent_report_id == "h1"
    assert reloaded.get("r1").audit_status().value == "GENUINE_REPAIR"


def test_duplicate_id_is_refused(store):
    store.append(hazard_report("h1"))

    with pytest.raises(StoreError) as excinfo:
        store.append(hazard_report("h1", near(north_m=100)))

    assert excinfo.value.context.error_type == ErrorType.STORE_DUPLICATE_ID
    assert len(store) == 1


def test_malformed_lines_are_skipped(tmp_path):
    path = tmp_path / "reports.jsonl"
    good = hazard_report("h1").to_dict()
    path.write_text(
        json.dumps(good) + "\n"
        + "{not json\n"
        + json.dumps({"id": "no-location"}) + "\n"
        + json.dumps(good) + "\n"
    )

    store = ReportStore(str(path))

    assert [r.id for r in store.snapshot()] == ["h1"]
    assert store.skipped_records == 3


def test_legacy_camel_case_records_load_as_hazards(tmp_path):
    path = tmp_path / "reports.jsonl"
    legacy = {
        "id": "old-1",
        "deviceId": "dev-x",
        "location": {"lat": ORIGIN.lat, "lng": ORIGIN.lng, "accuracy": 12},
        "timestamp": 1_600_000_000_000,
        "analysis": {"is_road": True, "hazard_detected": True},
        "addressContext": {"city": "Pune", "postalCode": "411001"},
        "image": "old-1/photos/a.jpg",
    }
    path.write_text(json.dumps(legacy) + "\n")

    report = ReportStore(str(path)).get("old-1")

    assert report.kind == ReportKind.HAZARD
    assert report.device_id == "dev-x"
    assert report.location.accuracy_m == 12
    assert report.address_context.postal_code == "411001"
    assert report.image_ref == "old-1/photos/a.jpg"


def test_hazard_never_reports_an_audit_status():
    hazard = hazard_report("h1", analysis={"repair_quality_audit": {"status": "GENUINE_REPAIR"}})
    assert hazard.audit_status() is None


def test_query_filters(store):
    store.append(hazard_report("h1", ORIGIN))
    store.append(hazard_report("h2", near(north_m=5000)))
    store.append(repair_report("r1", "dev-a", "h1"))
    store.append(repair_report("r2", "dev-b", "h1"))

    assert [r.id for r in store.hazards()] == ["h1", "h2"]
    assert [r.id for r in store.query(ReportQuery(device_id="dev-b"))] == ["r2"]
    assert [r.id for r in store.query(ReportQuery(parent_report_id="h1"))] == ["r1", "r2"]

    box = BoundingBox(south=ORIGIN.lat - 0.01, west=ORIGIN.lng - 0.01, north=ORIGIN.lat + 0.01, east=ORIGIN.lng + 0.01)
    assert [r.id for r in store.query(ReportQuery(kind=ReportKind.HAZARD, bbox=box))] == ["h1"]


def test_snapshot_is_immutable_view(store):
    store.append(hazard_report("h1"))
    snapshot = store.snapshot()
    store.append(hazard_report("h2", near(north_m=100)))

    assert len(snapshot) == 1
    assert store.get_stats()["hazards"] == 2


def test_report_round_trip_keeps_unknown_analysis_fields():
    report = hazard_report("h1", analysis={"is_road": True, "hazard_detected": True, "forensics": {"exif": "x"}})

    restored = Report.from_dict(json.loads(json.dumps(report.to_dict())))

    assert restored.analysis["forensics"] == {"exif": "x"}
    assert restored == report


def test_file_storage_saves_and_loads(tmp_path):
    storage = FileStorage(str(tmp_path / "uploads"))
    image_ref = storage.save_photo("h1", "../../etc/passwd.jpg", b"data")

    assert image_ref == "h1/photos/passwd.jpg"
    assert storage.load_photo(image_ref) == b"data"
    assert storage.list_photos("h1") == [image_ref]
    assert storage.get_storage_stats()["file_count"] == 1


def test_file_storage_refuses_escaping_refs(tmp_path):
    storage = FileStorage(str(tmp_path / "uploads"))

    with pytest.raises(StoreError):
        storage.load_photo("../outside.jpg")
    assert not storage.photo_exists("/etc/hosts")


def test_file_storage_missing_photo(tmp_path):
    storage = FileStorage(str(tmp_path / "uploads"))

    with pytest.raises(StoreError) as excinfo:
        storage.load_photo("h1/photos/none.jpg")

    assert excinfo.value.context.error_type == ErrorType.PHOTO_NOT_FOUND
    assert storage.delete_report_uploads("h1") is False
