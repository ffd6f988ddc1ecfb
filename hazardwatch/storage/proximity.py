"""Nearest-hazard search over a snapshot of stored reports."""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

import numpy as np

from ..models.geo import AddressContext, GeoLocation
from ..models.report import Report
from ..utils.geo import distances_meters

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProximityMatch:
    """A hazard and its distance from the queried location."""
    hazard: Report
    distance_m: float


class ProximityIndex:
    """
    Distance queries against a fixed set of hazards.

    Built from a snapshot, so every answer is consistent with the report set
    it was built from. Coordinates are held in numpy arrays and distances are
    computed in one vectorised pass per query. Equal distances are broken by
    earliest hazard timestamp.
    """

    def __init__(self, hazards: Sequence[Report]):
        self.hazards: List[Report] = [h for h in hazards if h.is_hazard]
        self._lats = np.array([h.location.lat for h in self.hazards], dtype=np.float64)
        self._lngs = np.array([h.location.lng for h in self.hazards], dtype=np.float64)
        self._timestamps = np.array([h.timestamp for h in self.hazards], dtype=np.int64)

    @classmethod
    def from_reports(cls, reports: Iterable[Report]) -> "ProximityIndex":
        return cls([r for r in reports if r.is_hazard])

    def __len__(self) -> int:
        return len(self.hazards)

    def _ranked(
        self,
        location: GeoLocation,
        predicate: Optional[Callable[[Report], bool]] = None
    ) -> List[ProximityMatch]:
        if not self.hazards:
            return []

        distances = distances_meters(location, self._lats, self._lngs)
        # lexsort uses the last key as primary
        order = np.lexsort((self._timestamps, distances))

        matches = []
        for idx in order:
            hazard = self.hazards[int(idx)]
            if predicate is not None and not predicate(hazard):
                continue
            matches.append(ProximityMatch(hazard=hazard, distance_m=float(distances[idx])))
        return matches

    def nearest(
        self,
        location: GeoLocation,
        predicate: Optional[Callable[[Report], bool]] = None
    ) -> Optional[ProximityMatch]:
        """
        Closest hazard satisfying ``predicate``.

        Args:
            location: Query location
            predicate: Optional filter, e.g. "hazard is not resolved"

        Returns:
            The closest match, or None if no hazard qualifies
        """
        ranked = self._ranked(location, predicate)
        return ranked[0] if ranked else None

    def within(
        self,
        location: GeoLocation,
        radius_m: float,
        inclusive: bool = True,
        predicate: Optional[Callable[[Report], bool]] = None
    ) -> List[ProximityMatch]:
        """
        Hazards within ``radius_m`` of a location, closest first.

        Args:
            location: Query location
            radius_m: Search radius in meters
            inclusive: Whether a hazard exactly at the radius is included
            predicate: Optional filter
        """
        if inclusive:
            return [m for m in self._ranked(location, predicate) if m.distance_m <= radius_m]
        return [m for m in self._ranked(location, predicate) if m.distance_m < radius_m]


def nearest_address(
    location: GeoLocation,
    reports: Iterable[Report],
    radius_m: float
) -> Optional[AddressContext]:
    """
    Address context of the closest report within ``radius_m`` that has one.

    Lets a new submission reuse an already-resolved place instead of asking
    the geocoder again. The result is advisory and never drives a decision.
    """
    candidates = [r for r in reports if r.address_context is not None]
    if not candidates:
        return None

    distances = distances_meters(
        location,
        [r.location.lat for r in candidates],
        [r.location.lng for r in candidates],
    )
    idx = int(np.argmin(distances))
    if distances[idx] >= radius_m:
        return None

    logger.debug(f"Reusing cached address from report {candidates[idx].id} ({distances[idx]:.1f}m)")
    return candidates[idx].address_context
