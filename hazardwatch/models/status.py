"""Derived hazard status models."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from .report import Report


class HazardState(str, Enum):
    ACTIVE = "Active"
    VERIFYING = "Verifying"
    RESOLVED = "Resolved"


@dataclass(frozen=True)
class HazardStatus:
    """
    Lifecycle status of a hazard, derived from its linked repairs.

    Never stored. ``verification_count`` is the number of distinct devices
    whose repair was judged genuine.
    """
    state: HazardState
    verification_count: int = 0

    @classmethod
    def active(cls) -> "HazardStatus":
        return cls(HazardState.ACTIVE, 0)

    @classmethod
    def verifying(cls, count: int) -> "HazardStatus":
        return cls(HazardState.VERIFYING, count)

    @classmethod
    def resolved(cls, count: int) -> "HazardStatus":
        return cls(HazardState.RESOLVED, count)

    @property
    def is_open(self) -> bool:
        return self.state != HazardState.RESOLVED

    @property
    def rank(self) -> int:
        """
        Total order Active < Verifying(1) < Verifying(2) < ... < Resolved.

        Resolved ranks above every Verifying count regardless of how many
        devices pushed it over the threshold.
        """
        if self.state == HazardState.ACTIVE:
            return 0
        if self.state == HazardState.VERIFYING:
            return self.verification_count
        return 1_000_000

    def label(self) -> str:
        if self.state == HazardState.VERIFYING:
            return f"Verifying({self.verification_count})"
        return self.state.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "label": self.label(),
            "verification_count": self.verification_count,
        }


@dataclass(frozen=True)
class HazardView:
    """A hazard paired with its derived status, as served to read paths."""
    hazard: Report
    status: HazardStatus

    @property
    def verification_count(self) -> int:
        return self.status.verification_count
