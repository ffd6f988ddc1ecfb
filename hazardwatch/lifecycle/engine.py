"""
Lifecycle engine: runs a submission from admission to commit and serves
the derived read views.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional, Sequence, Union

from ..models.analysis import HazardAnalysis, RepairAudit
from ..models.geo import AddressContext, BoundingBox, GeoLocation
from ..models.report import Report, ReportKind
from ..models.status import HazardView
from ..models.submission import (
    GateDecision,
    GateState,
    RejectionReason,
    SubmissionOutcome,
    SubmissionRequest,
)
from ..plugins.forensics import ForensicsOracle, build_location_context
from ..storage.file_storage import FileStorage
from ..storage.proximity import ProximityIndex, ProximityMatch, nearest_address
from ..storage.report_store import ReportStore
from ..utils.config import EngineConfig
from ..utils.errors import AnalysisError, StoreError
from ..utils.logging import set_context, with_context
from .consensus import ConsensusClassifier
from .gate import SubmissionGate
from .linking import LinkResolver
from .policy import RateLimiter, TimeWindowPolicy, UnlimitedRateLimiter

logger = logging.getLogger(__name__)


class LifecycleEngine:
    """
    Coordinates the hazard lifecycle.

    A submission moves through: rate limit, admission gate, forensic
    analysis, confirmation checks (drift, road, risk), then an atomic
    re-check and append. Every rejection is returned as a SubmissionOutcome;
    only a programming error or an id collision between devices raises.

    Hazard status is never stored. Every read re-derives it from the full
    report set through the consensus classifier.
    """

    def __init__(
        self,
        store: ReportStore,
        oracle: ForensicsOracle,
        file_storage: Optional[FileStorage] = None,
        config: Optional[EngineConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the engine.

        Args:
            store: Report system of record
            oracle: Forensics oracle used for triage and repair audits
            file_storage: Evidence photo storage; None skips photo persistence
            config: Admission and consensus rules
            rate_limiter: Per-device limiter; defaults to no limit
            clock: Source of report timestamps, in epoch seconds
        """
        self.store = store
        self.oracle = oracle
        self.file_storage = file_storage
        self.config = config or EngineConfig()
        self.rate_limiter = rate_limiter or UnlimitedRateLimiter()
        self.clock = clock

        self.policy = TimeWindowPolicy(self.config.window_open_hour, self.config.window_close_hour)
        self.resolver = LinkResolver(self.config.legacy_link_radius_m)
        self.classifier = ConsensusClassifier(self.resolver, self.config.resolution_threshold)
        self.gate = SubmissionGate(self.config, self.policy, self.resolver, self.classifier)

        logger.info(
            f"Initialized LifecycleEngine: threshold={self.config.resolution_threshold}, "
            f"window={self.config.window_open_hour}-{self.config.window_close_hour}h, "
            f"oracle_timeout={self.config.oracle_timeout_seconds}s"
        )

    # Submissions

    @with_context(component="engine")
    async def submit(
        self,
        request: SubmissionRequest,
        photo: bytes,
        filename: str = "evidence.jpg"
    ) -> SubmissionOutcome:
        """
        Process one hazard or repair submission.

        Args:
            request: Proposed submission
            photo: Evidence photo bytes
            filename: Original photo filename

        Returns:
            SubmissionOutcome: admitted, rejected or soft-rejected

        Raises:
            StoreError: If ``request.report_id`` already belongs to another device
        """
        set_context(
            device_id=request.device_id,
            report_id=request.report_id,
            kind=request.kind.value
        )
        logger.info(f"Received {request.kind.value} submission {request.report_id} from {request.device_id}")

        if not self.rate_limiter.allow(request.device_id):
            return SubmissionOutcome.reject(RejectionReason.RATE_LIMITED, [GateState.REQUESTED])

        replayed = self._replayed(request)
        if replayed is not None:
            return replayed

        snapshot = self.store.snapshot()
        decision = self.gate.evaluate(request, snapshot)
        if not decision.admitted:
            return self._rejected(decision)
        trail = list(decision.trail)

        address = request.address_context or nearest_address(
            request.captured_location, snapshot, self.config.address_cache_radius_m
        )

        try:
            verdict = await asyncio.wait_for(
                self._analyze(request, photo, decision, address),
                timeout=self.config.oracle_timeout_seconds
            )
        except asyncio.TimeoutError:
            operation = "triage_hazard" if request.kind == ReportKind.HAZARD else "verify_repair"
            error = AnalysisError.timeout(operation, self.config.oracle_timeout_seconds)
            logger.warning(f"{error.context.message} for {request.report_id}")
            return SubmissionOutcome.reject(
                RejectionReason.ANALYSIS_FAILED, trail, error=error.context.message
            )
        except AnalysisError as e:
            logger.warning(f"Analysis failed for {request.report_id}: {e.context.message}")
            return SubmissionOutcome.reject(
                RejectionReason.ANALYSIS_FAILED, trail, error=e.context.message
            )
        trail.append(GateState.ANALYZED)
        analysis = verdict.raw

        drifted, drift_m = self.gate.check_drift(request)
        if drifted:
            logger.info(f"Rejected {request.report_id}: moved {drift_m:.1f}m since capture")
            return SubmissionOutcome.reject(
                RejectionReason.LOCATION_DRIFTED, trail, analysis=analysis, drift_m=round(drift_m, 1)
            )

        if not verdict.is_road:
            logger.info(f"Rejected {request.report_id}: photo is not a road")
            return SubmissionOutcome.reject(RejectionReason.NOT_A_ROAD, trail, analysis=analysis)

        if isinstance(verdict, HazardAnalysis) and self.gate.check_risk(verdict):
            logger.info(
                f"Soft-rejected {request.report_id}: accident probability "
                f"{verdict.accident_probability_score} below {self.config.low_risk_threshold}"
            )
            return SubmissionOutcome.reject(
                RejectionReason.LOW_RISK_SOFT_REJECT, trail, analysis=analysis,
                accident_probability_score=verdict.accident_probability_score
            )
        trail.append(GateState.CONFIRMED)

        # file writes and fsync stay off the event loop
        return await asyncio.to_thread(self._commit, request, photo, filename, analysis, address, trail)

    async def submit_hazard(self, request: SubmissionRequest, photo: bytes, filename: str = "evidence.jpg") -> SubmissionOutcome:
        if request.kind != ReportKind.HAZARD:
            raise ValueError(f"expected a hazard submission, got {request.kind.value}")
        return await self.submit(request, photo, filename)

    async def submit_repair(self, request: SubmissionRequest, photo: bytes, filename: str = "evidence.jpg") -> SubmissionOutcome:
        if request.kind != ReportKind.REPAIR:
            raise ValueError(f"expected a repair submission, got {request.kind.value}")
        return await self.submit(request, photo, filename)

    async def _analyze(
        self,
        request: SubmissionRequest,
        photo: bytes,
        decision: GateDecision,
        address: Optional[AddressContext]
    ) -> Union[HazardAnalysis, RepairAudit]:
        location = request.captured_location
        context = build_location_context(
            location.lat,
            location.lng,
            location.accuracy_m,
            request.device_id,
            address.formatted_address if address else None
        )

        if request.kind == ReportKind.HAZARD:
            return await self.oracle.triage_hazard(photo, context)

        original_photo = self._load_original_photo(decision.target_hazard)
        return await self.oracle.verify_repair(photo, original_photo, context)

    def _load_original_photo(self, hazard: Optional[Report]) -> Optional[bytes]:
        if hazard is None or not hazard.image_ref or self.file_storage is None:
            return None
        try:
            return self.file_storage.load_photo(hazard.image_ref)
        except StoreError as e:
            logger.warning(f"Original photo for hazard {hazard.id} unavailable: {e.context.message}")
            return None

    def _commit(
        self,
        request: SubmissionRequest,
        photo: bytes,
        filename: str,
        analysis: dict,
        address: Optional[AddressContext],
        trail: List[GateState]
    ) -> SubmissionOutcome:
        """Re-check the gate against the current store and append, atomically."""
        with self.store.transaction():
            replayed = self._replayed(request)
            if replayed is not None:
                return replayed

            decision = self.gate.evaluate(request, self.store.snapshot())
            if not decision.admitted:
                logger.info(f"Rejected {request.report_id} on re-check: {decision.reason.value}")
                return self._rejected(decision, analysis=analysis)

            image_ref = None
            if self.file_storage is not None:
                try:
                    image_ref = self.file_storage.save_photo(request.report_id, filename, photo)
                except StoreError as e:
                    return SubmissionOutcome.reject(
                        RejectionReason.STORE_UNAVAILABLE, trail, analysis=analysis, error=e.context.message
                    )

            report = Report(
                id=request.report_id,
                device_id=request.device_id,
                user_id=request.identity.user_id,
                kind=request.kind,
                parent_report_id=decision.target_hazard.id if decision.target_hazard else None,
                location=request.captured_location,
                timestamp=int(self.clock() * 1000),
                analysis=analysis,
                address_context=address,
                image_ref=image_ref,
            )

            try:
                self.store.append(report)
            except StoreError as e:
                logger.error(f"Failed to store {report.id}: {e.context.message}")
                if self.file_storage is not None:
                    self.file_storage.delete_report_uploads(report.id)
                return SubmissionOutcome.reject(
                    RejectionReason.STORE_UNAVAILABLE, trail, analysis=analysis, error=e.context.message
                )

        logger.info(
            f"Admitted {report.kind.value} {report.id}"
            + (f" for hazard {report.parent_report_id}" if report.parent_report_id else "")
        )
        return SubmissionOutcome.admit(report, trail)

    def _replayed(self, request: SubmissionRequest) -> Optional[SubmissionOutcome]:
        """Outcome for a retry of an already stored submission, if this is one."""
        existing = self.store.get(request.report_id)
        if existing is None:
            return None
        if existing.device_id != request.device_id or existing.kind != request.kind:
            logger.error(f"Report id {request.report_id} already used by another submission")
            raise StoreError.duplicate_id(request.report_id)

        logger.info(f"Submission {request.report_id} already stored, returning stored report")
        return SubmissionOutcome.admit(existing, [GateState.REQUESTED], message="Report already submitted.")

    def _rejected(self, decision: GateDecision, analysis: Optional[dict] = None) -> SubmissionOutcome:
        message = None
        if decision.reason == RejectionReason.OUTSIDE_HOURS:
            message = self.policy.describe()

        details = {}
        if decision.distance_m is not None:
            details["distance_m"] = round(decision.distance_m, 1)
        if decision.target_hazard is not None:
            details["hazard_id"] = decision.target_hazard.id

        return SubmissionOutcome.reject(
            decision.reason, decision.trail, analysis=analysis, message=message, **details
        )

    # Read views

    def _views(self, reports: Sequence[Report]) -> List[HazardView]:
        statuses = self.classifier.classify_all(reports)
        return [
            HazardView(hazard=report, status=statuses[report.id])
            for report in reports
            if report.is_hazard
        ]

    def list_hazards(
        self,
        bbox: Optional[BoundingBox] = None,
        include_resolved: bool = False
    ) -> List[HazardView]:
        """
        Hazards with their derived status, newest first.

        Args:
            bbox: Only hazards inside this box
            include_resolved: Whether resolved hazards are included

        Returns:
            List of HazardView
        """
        views = [
            view for view in self._views(self.store.snapshot())
            if (include_resolved or view.status.is_open)
            and (bbox is None or bbox.contains(view.hazard.location))
        ]
        views.sort(key=lambda view: view.hazard.timestamp, reverse=True)
        return views

    def list_resolved(self, bbox: Optional[BoundingBox] = None) -> List[HazardView]:
        return [
            view for view in self.list_hazards(bbox, include_resolved=True)
            if not view.status.is_open
        ]

    def get_hazard(self, hazard_id: str) -> Optional[HazardView]:
        reports = self.store.snapshot()
        hazard = next((r for r in reports if r.id == hazard_id and r.is_hazard), None)
        if hazard is None:
            return None
        repairs = self.resolver.group_repairs(reports).get(hazard.id, [])
        return HazardView(hazard=hazard, status=self.classifier.classify(hazard, repairs))

    def get_history(self, hazard_id: str) -> List[Report]:
        """
        The hazard followed by every repair linked to it, oldest first.

        Unlinked repairs never appear. Unknown ids give an empty list.
        """
        reports = self.store.snapshot()
        hazard = next((r for r in reports if r.id == hazard_id and r.is_hazard), None)
        if hazard is None:
            return []
        repairs = self.resolver.group_repairs(reports).get(hazard.id, [])
        return sorted([hazard] + repairs, key=lambda r: r.timestamp)

    def nearest_open_hazard(
        self,
        location: GeoLocation,
        radius_m: Optional[float] = None
    ) -> Optional[ProximityMatch]:
        """
        Closest non-resolved hazard a repair could target from ``location``.

        Args:
            location: Device location
            radius_m: Search radius; defaults to the repair proximity radius (inclusive)
        """
        radius = self.config.repair_proximity_radius_m if radius_m is None else radius_m
        reports = self.store.snapshot()
        statuses = self.classifier.classify_all(reports)
        index = ProximityIndex.from_reports(reports)

        match = index.nearest(location, predicate=lambda h: statuses[h.id].is_open)
        if match is None or match.distance_m > radius:
            return None
        return match

    def hazards_near(self, location: GeoLocation, radius_m: float) -> List[HazardView]:
        """Open hazards within ``radius_m`` of a location, closest first."""
        reports = self.store.snapshot()
        statuses = self.classifier.classify_all(reports)
        index = ProximityIndex.from_reports(reports)
        return [
            HazardView(hazard=match.hazard, status=statuses[match.hazard.id])
            for match in index.within(location, radius_m, predicate=lambda h: statuses[h.id].is_open)
        ]

    def get_stats(self) -> dict:
        views = self._views(self.store.snapshot())
        stats = dict(self.store.get_stats())
        stats.update({
            "active": sum(1 for v in views if v.status.rank == 0),
            "verifying": sum(1 for v in views if v.status.is_open and v.status.rank > 0),
            "resolved": sum(1 for v in views if not v.status.is_open),
        })
        return stats
