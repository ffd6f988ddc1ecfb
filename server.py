"""FastAPI frontend for the hazard lifecycle engine."""

from __future__ import annotations

import io
import json
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from PIL import Image, UnidentifiedImageError

from hazardwatch import service
from hazardwatch.lifecycle.engine import LifecycleEngine
from hazardwatch.models import (
    AddressContext,
    BoundingBox,
    DeviceIdentity,
    GeoLocation,
    OutcomeStatus,
    RejectionReason,
    ReportKind,
    SubmissionOutcome,
    SubmissionRequest,
)
from hazardwatch.utils.errors import ErrorType, HazardEngineError
from hazardwatch.utils.response_formatter import ResponseFormatter


APP_TITLE = "HazardWatch - Road Hazard Lifecycle"
ALLOWED_IMAGE_FORMATS = {"JPEG", "PNG", "WEBP", "GIF"}
MAX_PHOTO_MB = int(os.getenv("MAX_PHOTO_MB", "10"))


app = FastAPI(title=APP_TITLE)


def get_engine() -> LifecycleEngine:
    """Engine dependency; tests swap it through app.dependency_overrides."""
    return service.get_engine()


def _read_photo(photo: UploadFile) -> bytes:
    data = photo.file.read()
    if not data:
        raise HTTPException(status_code=400, detail=f"{photo.filename or 'photo'} is empty.")
    if len(data) > MAX_PHOTO_MB * 1024 * 1024:
        raise HTTPException(
            status_code=400,
            detail=f"{photo.filename} exceeds the limit of {MAX_PHOTO_MB} MB.",
        )
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise HTTPException(status_code=400, detail=f"{photo.filename} is not a readable image.")
    if image_format not in ALLOWED_IMAGE_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported image format: {image_format}.")
    return data


def _parse_local_time(local_time: Optional[str]) -> datetime:
    """Device wall-clock time; the server's local time when the device sent none."""
    if not local_time:
        return datetime.now()
    try:
        return datetime.fromisoformat(local_time)
    except ValueError:
        raise HTTPException(status_code=400, detail="local_time must be an ISO 8601 timestamp.")


def _parse_address(address: Optional[str]) -> Optional[AddressContext]:
    if not address:
        return None
    try:
        data = json.loads(address)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="address must be a JSON object.")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="address must be a JSON object.")
    return AddressContext.from_dict(data)


def _location(lat: float, lng: float, accuracy: float = 0.0) -> GeoLocation:
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise HTTPException(status_code=400, detail="Coordinates out of range.")
    return GeoLocation(lat=lat, lng=lng, accuracy_m=accuracy)


def _bbox(
    south: Optional[float],
    west: Optional[float],
    north: Optional[float],
    east: Optional[float]
) -> Optional[BoundingBox]:
    values = (south, west, north, east)
    if all(value is None for value in values):
        return None
    if any(value is None for value in values):
        raise HTTPException(status_code=400, detail="Bounding box needs south, west, north and east.")
    return BoundingBox(south=south, west=west, north=north, east=east)


def _status_code(outcome: SubmissionOutcome) -> int:
    if outcome.admitted:
        return 201
    if outcome.status == OutcomeStatus.SOFT_REJECTED:
        return 200
    if outcome.reason == RejectionReason.RATE_LIMITED:
        return 429
    if outcome.retryable:
        return 503
    return 409


async def _submit(engine: LifecycleEngine, request: SubmissionRequest, photo: UploadFile) -> JSONResponse:
    data = _read_photo(photo)
    try:
        outcome = await engine.submit(request, data, photo.filename or "evidence.jpg")
    except HazardEngineError as e:
        if e.context.error_type == ErrorType.STORE_DUPLICATE_ID:
            raise HTTPException(status_code=409, detail=e.context.message)
        raise HTTPException(status_code=503 if e.recoverable else 500, detail=e.context.message)
    return JSONResponse(status_code=_status_code(outcome), content=jsonable_encoder(outcome.to_dict()))


@app.post("/api/reports/hazard")
async def submit_hazard(
    report_id: str = Form(...),
    device_id: str = Form(...),
    lat: float = Form(...),
    lng: float = Form(...),
    accuracy: float = Form(0.0),
    live_lat: Optional[float] = Form(None),
    live_lng: Optional[float] = Form(None),
    local_time: Optional[str] = Form(None),
    user_id: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    photo: UploadFile = File(...),
    engine: LifecycleEngine = Depends(get_engine),
) -> JSONResponse:
    captured = _location(lat, lng, accuracy)
    live = _location(live_lat, live_lng, accuracy) if live_lat is not None and live_lng is not None else captured
    request = SubmissionRequest(
        report_id=report_id,
        identity=DeviceIdentity(device_id=device_id, user_id=user_id),
        kind=ReportKind.HAZARD,
        captured_location=captured,
        live_location=live,
        now=_parse_local_time(local_time),
        address_context=_parse_address(address),
    )
    return await _submit(engine, request, photo)


@app.post("/api/reports/repair")
async def submit_repair(
    report_id: str = Form(...),
    device_id: str = Form(...),
    lat: float = Form(...),
    lng: float = Form(...),
    accuracy: float = Form(0.0),
    live_lat: Optional[float] = Form(None),
    live_lng: Optional[float] = Form(None),
    target_hazard_id: Optional[str] = Form(None),
    local_time: Optional[str] = Form(None),
    user_id: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    photo: UploadFile = File(...),
    engine: LifecycleEngine = Depends(get_engine),
) -> JSONResponse:
    captured = _location(lat, lng, accuracy)
    live = _location(live_lat, live_lng, accuracy) if live_lat is not None and live_lng is not None else captured
    request = SubmissionRequest(
        report_id=report_id,
        identity=DeviceIdentity(device_id=device_id, user_id=user_id),
        kind=ReportKind.REPAIR,
        captured_location=captured,
        live_location=live,
        now=_parse_local_time(local_time),
        target_hazard_id=target_hazard_id or None,
        address_context=_parse_address(address),
    )
    return await _submit(engine, request, photo)


@app.get("/api/hazards")
async def list_hazards(
    south: Optional[float] = None,
    west: Optional[float] = None,
    north: Optional[float] = None,
    east: Optional[float] = None,
    include_resolved: bool = False,
    engine: LifecycleEngine = Depends(get_engine),
) -> Dict[str, Any]:
    views = engine.list_hazards(_bbox(south, west, north, east), include_resolved=include_resolved)
    return {
        "count": len(views),
        "hazards": [ResponseFormatter.hazard_view_payload(view) for view in views],
    }


@app.get("/api/hazards/nearby")
async def nearby_hazards(
    lat: float,
    lng: float,
    radius_m: Optional[float] = Query(None, gt=0),
    engine: LifecycleEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Open hazards around a device and the one a repair would unlock."""
    location = _location(lat, lng)
    match = engine.nearest_open_hazard(location)
    views = engine.hazards_near(location, radius_m or engine.config.address_cache_radius_m)
    return {
        "nearest": {
            "hazard_id": match.hazard.id,
            "distance_m": round(match.distance_m, 1),
        } if match else None,
        "hazards": [ResponseFormatter.hazard_view_payload(view) for view in views],
    }


@app.get("/api/hazards/{hazard_id}")
async def get_hazard(hazard_id: str, engine: LifecycleEngine = Depends(get_engine)) -> Dict[str, Any]:
    view = engine.get_hazard(hazard_id)
    if view is None:
        raise HTTPException(status_code=404, detail="Hazard not found.")
    return ResponseFormatter.hazard_view_payload(view)


@app.get("/api/hazards/{hazard_id}/history")
async def hazard_history(hazard_id: str, engine: LifecycleEngine = Depends(get_engine)) -> Dict[str, Any]:
    history = engine.get_history(hazard_id)
    if not history:
        raise HTTPException(status_code=404, detail="Hazard not found.")
    return {
        "hazard_id": hazard_id,
        "reports": [ResponseFormatter.report_payload(report) for report in history],
    }


@app.get("/api/regions")
async def regions(resolved: bool = False, engine: LifecycleEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Hazards grouped by state and district, for the active or resolved tab."""
    views = engine.list_resolved() if resolved else engine.list_hazards()
    return {"resolved": resolved, "regions": ResponseFormatter.group_by_region(views)}


@app.get("/navigate")
async def navigation_feed(engine: LifecycleEngine = Depends(get_engine)) -> List[Dict[str, Any]]:
    return [ResponseFormatter.navigation_payload(view) for view in engine.list_hazards()]


@app.get("/civic")
async def civic_feed(
    include_resolved: bool = False,
    engine: LifecycleEngine = Depends(get_engine),
) -> Dict[str, Any]:
    views = engine.list_hazards(include_resolved=include_resolved)
    return {
        "count": len(views),
        "data": [ResponseFormatter.civic_payload(view) for view in views],
    }


@app.get("/healthz")
async def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}
