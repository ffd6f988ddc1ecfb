"""Admission control for hazard and repair submissions."""

import logging
from typing import Dict, Optional, Sequence, Tuple

from ..models.analysis import HazardAnalysis
from ..models.report import Report, ReportKind
from ..models.status import HazardStatus
from ..models.submission import GateDecision, GateState, RejectionReason, SubmissionRequest
from ..storage.proximity import ProximityIndex
from ..utils.config import EngineConfig
from ..utils.geo import distance_meters
from .consensus import ConsensusClassifier
from .linking import LinkResolver
from .policy import TimeWindowPolicy

logger = logging.getLogger(__name__)

NEW_HAZARD_EXCLUSION_RADIUS_M = 20.0
REPAIR_PROXIMITY_RADIUS_M = 20.0
MAX_DRIFT_METERS = 50.0
LOW_RISK_THRESHOLD = 40


def blocks_new_hazard(distance_m: float, radius_m: float = NEW_HAZARD_EXCLUSION_RADIUS_M) -> bool:
    """An open hazard blocks a new report only when strictly closer than the radius."""
    return distance_m < radius_m


def permits_repair(distance_m: float, radius_m: float = REPAIR_PROXIMITY_RADIUS_M) -> bool:
    """A repair may target a hazard at or inside the radius."""
    return distance_m <= radius_m


def exceeds_drift(distance_m: float, max_drift_m: float = MAX_DRIFT_METERS) -> bool:
    """Drift exactly at the limit is tolerated."""
    return distance_m > max_drift_m


def is_low_risk(analysis: HazardAnalysis, threshold: int = LOW_RISK_THRESHOLD) -> bool:
    """
    Whether a triage verdict falls under the reporting threshold.

    A missing score never counts as low risk: the report goes through so a
    person can look at it rather than being dropped silently.
    """
    score = analysis.accident_probability_score
    return score is not None and score < threshold


class SubmissionGate:
    """
    Ordered admission rules for a single submission attempt.

    Rules run in a fixed order and stop at the first failure:
    time window, proximity, then (repairs only) one attempt per device per
    hazard. The gate holds no state between calls; every decision is made
    against the report snapshot it is handed.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        policy: Optional[TimeWindowPolicy] = None,
        resolver: Optional[LinkResolver] = None,
        classifier: Optional[ConsensusClassifier] = None
    ):
        self.config = config or EngineConfig()
        self.policy = policy or TimeWindowPolicy(
            self.config.window_open_hour, self.config.window_close_hour
        )
        self.resolver = resolver or LinkResolver(self.config.legacy_link_radius_m)
        self.classifier = classifier or ConsensusClassifier(
            self.resolver, self.config.resolution_threshold
        )

    def evaluate(self, request: SubmissionRequest, reports: Sequence[Report]) -> GateDecision:
        """
        Run the pre-analysis rules.

        Args:
            request: Proposed submission
            reports: Snapshot of the report store

        Returns:
            GateDecision with the first failing reason, or admitted
        """
        trail = [GateState.REQUESTED]

        if not self.policy.is_submission_window_open(request.now):
            logger.info(f"Rejected {request.kind.value} from {request.device_id}: outside hours ({request.now:%H:%M})")
            return GateDecision(admitted=False, reason=RejectionReason.OUTSIDE_HOURS, trail=trail)
        trail.append(GateState.TIME_CHECKED)

        hazards = [r for r in reports if r.is_hazard]
        index = ProximityIndex(hazards)
        statuses = self.classifier.classify_all(reports)

        if request.kind == ReportKind.HAZARD:
            reason, distance = self._check_exclusion(request, index, statuses)
            target = None
        else:
            reason, target, distance = self._check_repair_target(request, hazards, index, statuses)

        if reason is not None:
            return GateDecision(admitted=False, reason=reason, trail=trail, distance_m=distance)
        trail.append(GateState.PROXIMITY_CHECKED)

        if request.kind == ReportKind.REPAIR:
            if self.has_prior_attempt(request.device_id, target.id, reports, hazards, index):
                logger.info(f"Rejected repair from {request.device_id}: already verified {target.id}")
                return GateDecision(
                    admitted=False,
                    reason=RejectionReason.ALREADY_VERIFIED_BY_DEVICE,
                    trail=trail,
                    target_hazard=target,
                    distance_m=distance,
                )
        trail.append(GateState.DUPLICATE_CHECKED)

        return GateDecision(admitted=True, trail=trail, target_hazard=target, distance_m=distance)

    def _check_exclusion(
        self,
        request: SubmissionRequest,
        index: ProximityIndex,
        statuses: Dict[str, HazardStatus]
    ) -> Tuple[Optional[RejectionReason], Optional[float]]:
        nearest = index.nearest(
            request.claimed_location,
            predicate=lambda h: statuses.get(h.id, HazardStatus.active()).is_open
        )
        if nearest is None:
            return None, None

        if blocks_new_hazard(nearest.distance_m, self.config.new_hazard_exclusion_radius_m):
            logger.info(
                f"Rejected hazard from {request.device_id}: open hazard {nearest.hazard.id} "
                f"{nearest.distance_m:.1f}m away"
            )
            return RejectionReason.HAZARD_ALREADY_NEARBY, nearest.distance_m
        return None, nearest.distance_m

    def _check_repair_target(
        self,
        request: SubmissionRequest,
        hazards: Sequence[Report],
        index: ProximityIndex,
        statuses: Dict[str, HazardStatus]
    ) -> Tuple[Optional[RejectionReason], Optional[Report], Optional[float]]:
        radius = self.config.repair_proximity_radius_m

        def targetable(hazard: Report) -> bool:
            status = statuses.get(hazard.id, HazardStatus.active())
            return status.is_open or self.config.accept_repairs_on_resolved

        if request.target_hazard_id is None:
            nearest = index.nearest(request.live_location, predicate=targetable)
            if nearest is None or not permits_repair(nearest.distance_m, radius):
                logger.info(f"Rejected repair from {request.device_id}: no open hazard within {radius:.0f}m")
                return RejectionReason.NO_HAZARD_NEARBY, None, nearest.distance_m if nearest else None
            return None, nearest.hazard, nearest.distance_m

        target = next((h for h in hazards if h.id == request.target_hazard_id), None)
        if target is None:
            logger.info(f"Rejected repair from {request.device_id}: unknown hazard {request.target_hazard_id}")
            return RejectionReason.NO_HAZARD_NEARBY, None, None

        distance = distance_meters(request.live_location, target.location)
        if not permits_repair(distance, radius):
            logger.info(f"Rejected repair from {request.device_id}: {distance:.1f}m from hazard {target.id}")
            return RejectionReason.NO_HAZARD_NEARBY, target, distance

        if not targetable(target):
            logger.info(f"Rejected repair from {request.device_id}: hazard {target.id} already resolved")
            return RejectionReason.NO_HAZARD_NEARBY, target, distance

        return None, target, distance

    def has_prior_attempt(
        self,
        device_id: str,
        hazard_id: str,
        reports: Sequence[Report],
        hazards: Optional[Sequence[Report]] = None,
        index: Optional[ProximityIndex] = None
    ) -> bool:
        """
        Whether the device already submitted any repair for this hazard.

        Any audit outcome counts: one attempt per device per hazard.
        """
        if hazards is None:
            hazards = [r for r in reports if r.is_hazard]
        if index is None:
            index = ProximityIndex(hazards)

        for report in reports:
            if not report.is_repair or report.device_id != device_id:
                continue
            if self.resolver.resolve_parent(report, hazards, index=index) == hazard_id:
                return True
        return False

    def check_drift(self, request: SubmissionRequest) -> Tuple[bool, float]:
        """
        Compare the photo location with the live location at confirmation.

        Returns:
            (drifted, distance_m)
        """
        distance = distance_meters(request.captured_location, request.live_location)
        return exceeds_drift(distance, self.config.max_drift_m), distance

    def check_risk(self, analysis: HazardAnalysis) -> bool:
        """True when a hazard triage should be soft-rejected as low risk."""
        return is_low_risk(analysis, self.config.low_risk_threshold)
