"""Repair-to-hazard link resolution."""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from ..models.report import Report
from ..storage.proximity import ProximityIndex

logger = logging.getLogger(__name__)

LEGACY_LINK_RADIUS_M = 30.0


class LinkResolver:
    """
    Decides which hazard a repair verifies.

    Resolution order:
    1. An explicit ``parent_report_id`` that names a stored hazard.
    2. For repairs without a usable parent id (data written before explicit
       linking existed): the closest hazard strictly within the legacy radius,
       ties going to the earliest hazard.
    3. Otherwise the repair is unlinked. It stays stored for audit but
       belongs to no hazard.
    """

    def __init__(self, legacy_link_radius_m: float = LEGACY_LINK_RADIUS_M):
        self.legacy_link_radius_m = legacy_link_radius_m

    def resolve_parent(
        self,
        repair: Report,
        hazards: Sequence[Report],
        index: Optional[ProximityIndex] = None
    ) -> Optional[str]:
        """
        Resolve the hazard id a repair is linked to.

        Args:
            repair: Repair report
            hazards: Every known hazard
            index: Optional prebuilt index over ``hazards``

        Returns:
            Hazard id, or None when the repair is unlinked
        """
        if not repair.is_repair:
            return None

        if repair.parent_report_id:
            for hazard in hazards:
                if hazard.id == repair.parent_report_id and hazard.is_hazard:
                    return hazard.id
            logger.debug(
                f"Repair {repair.id} names unknown parent {repair.parent_report_id}, "
                f"falling back to spatial match"
            )

        if index is None:
            index = ProximityIndex(hazards)

        match = index.nearest(repair.location)
        if match is None or match.distance_m >= self.legacy_link_radius_m:
            return None
        return match.hazard.id

    def group_repairs(self, reports: Iterable[Report]) -> Dict[str, List[Report]]:
        """
        Map every hazard id to its linked repairs in one pass.

        Hazards without repairs map to an empty list; unlinked repairs are
        left out. Repairs keep their relative order from ``reports``.
        """
        reports = list(reports)
        hazards = [r for r in reports if r.is_hazard]
        hazard_ids = {h.id for h in hazards}
        index = ProximityIndex(hazards)

        grouped: Dict[str, List[Report]] = {h.id: [] for h in hazards}
        for report in reports:
            if not report.is_repair:
                continue
            if report.parent_report_id in hazard_ids:
                grouped[report.parent_report_id].append(report)
                continue
            parent_id = self.resolve_parent(report, hazards, index=index)
            if parent_id is not None:
                grouped[parent_id].append(report)

        return grouped
