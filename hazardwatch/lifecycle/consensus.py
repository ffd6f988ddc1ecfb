"""Hazard status derivation from repair consensus."""

import logging
from typing import Dict, Iterable, Optional

from ..models.report import AuditStatus, Report
from ..models.status import HazardStatus
from .linking import LinkResolver

logger = logging.getLogger(__name__)

RESOLUTION_THRESHOLD = 3


def classify(
    hazard: Report,
    linked_repairs: Iterable[Report],
    threshold: int = RESOLUTION_THRESHOLD
) -> HazardStatus:
    """
    Derive a hazard's lifecycle status from the repairs linked to it.

    Only repairs audited GENUINE_REPAIR count, and each device counts once
    however many it submitted. A repair with a missing or unrecognised audit
    counts as not repaired. Pure: the same inputs always give the same status.

    Args:
        hazard: The hazard being classified
        linked_repairs: Repairs already resolved to this hazard
        threshold: Distinct devices needed to resolve the hazard

    Returns:
        Active, Verifying(n) or Resolved
    """
    devices = {
        repair.device_id
        for repair in linked_repairs
        if repair.audit_status() == AuditStatus.GENUINE_REPAIR
    }
    count = len(devices)

    if count == 0:
        return HazardStatus.active()
    if count < threshold:
        return HazardStatus.verifying(count)
    return HazardStatus.resolved(count)


class ConsensusClassifier:
    """Applies ``classify`` across a whole report set."""

    def __init__(
        self,
        resolver: Optional[LinkResolver] = None,
        threshold: int = RESOLUTION_THRESHOLD
    ):
        self.resolver = resolver or LinkResolver()
        self.threshold = threshold

    def classify(self, hazard: Report, linked_repairs: Iterable[Report]) -> HazardStatus:
        return classify(hazard, linked_repairs, self.threshold)

    def classify_all(self, reports: Iterable[Report]) -> Dict[str, HazardStatus]:
        """
        Status of every hazard in ``reports``.

        Returns:
            Mapping of hazard id to status
        """
        reports = list(reports)
        by_id = {r.id: r for r in reports if r.is_hazard}
        grouped = self.resolver.group_repairs(reports)
        return {
            hazard_id: self.classify(by_id[hazard_id], repairs)
            for hazard_id, repairs in grouped.items()
        }
