"""Append-only report store backed by a JSON Lines file."""

import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from ..models.geo import BoundingBox
from ..models.report import Report, ReportKind
from ..utils.errors import StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportQuery:
    """
    Filter for ReportStore.query. Unset fields match everything.

    Attributes:
        kind: Only reports of this kind
        device_id: Only reports from this device
        parent_report_id: Only repairs that explicitly reference this hazard
        bbox: Only reports located inside this box
    """
    kind: Optional[ReportKind] = None
    device_id: Optional[str] = None
    parent_report_id: Optional[str] = None
    bbox: Optional[BoundingBox] = None

    def matches(self, report: Report) -> bool:
        if self.kind is not None and report.kind != self.kind:
            return False
        if self.device_id is not None and report.device_id != self.device_id:
            return False
        if self.parent_report_id is not None and report.parent_report_id != self.parent_report_id:
            return False
        if self.bbox is not None and not self.bbox.contains(report.location):
            return False
        return True


class ReportStore:
    """
    The system of record for hazard and repair reports.

    Reports are only ever appended; there is no update or delete. Each
    append is written to the JSON Lines file before it becomes visible in
    memory, so a failed write leaves no report behind.

    The store lock is re-entrant and exposed through ``transaction()`` so a
    caller can re-check admission rules and append without another writer
    interleaving.
    """

    def __init__(self, path: Optional[str] = None):
        """
        Initialize the store.

        Args:
            path: JSON Lines file to persist to; None keeps reports in memory only
        """
        self.path = Path(path) if path else None
        self._lock = threading.RLock()
        self._reports: List[Report] = []
        self._by_id: Dict[str, Report] = {}
        self.skipped_records = 0

        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._load()

        logger.info(
            f"Initialized ReportStore: path={self.path or '(memory)'}, "
            f"reports={len(self._reports)}"
        )

    def _load(self) -> None:
        """Read existing records, skipping any line that cannot be parsed."""
        if not self.path.exists():
            return

        with open(self.path, 'r', encoding='utf-8') as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    report = Report.from_dict(json.loads(line))
                except (ValueError, TypeError, KeyError) as e:
                    self.skipped_records += 1
                    logger.warning(f"Skipping malformed report at {self.path}:{line_number}: {str(e)}")
                    continue
                if report.id in self._by_id:
                    self.skipped_records += 1
                    logger.warning(f"Skipping duplicate report id {report.id} at line {line_number}")
                    continue
                self._reports.append(report)
                self._by_id[report.id] = report

        if self.skipped_records:
            logger.warning(f"Loaded {len(self._reports)} reports, skipped {self.skipped_records}")

    @contextmanager
    def transaction(self) -> Iterator["ReportStore"]:
        """Hold the store lock for a check-and-append sequence."""
        with self._lock:
            yield self

    def append(self, report: Report) -> Report:
        """
        Append a report.

        Args:
            report: Report to store

        Returns:
            The stored report

        Raises:
            StoreError: If the id already exists or the write fails
        """
        with self._lock:
            if report.id in self._by_id:
                raise StoreError.duplicate_id(report.id)

            if self.path is not None:
                try:
                    with open(self.path, 'a', encoding='utf-8') as f:
                        f.write(json.dumps(report.to_dict(), ensure_ascii=False) + "\n")
                        f.flush()
                        os.fsync(f.fileno())
                except OSError as e:
                    logger.error(f"Failed to persist report {report.id}: {str(e)}")
                    raise StoreError.unavailable("append", e) from e

            self._reports.append(report)
            self._by_id[report.id] = report

        logger.debug(f"Appended {report.kind.value} report {report.id}")
        return report

    def get(self, report_id: str) -> Optional[Report]:
        with self._lock:
            return self._by_id.get(report_id)

    def snapshot(self) -> Tuple[Report, ...]:
        """Consistent, immutable view of every stored report in append order."""
        with self._lock:
            return tuple(self._reports)

    def query(self, query: Optional[ReportQuery] = None) -> List[Report]:
        """
        Return reports matching a filter, in append order.

        Args:
            query: Filter to apply; None returns everything
        """
        reports = self.snapshot()
        if query is None:
            return list(reports)
        return [report for report in reports if query.matches(report)]

    def hazards(self) -> List[Report]:
        return self.query(ReportQuery(kind=ReportKind.HAZARD))

    def repairs(self) -> List[Report]:
        return self.query(ReportQuery(kind=ReportKind.REPAIR))

    def __len__(self) -> int:
        with self._lock:
            return len(self._reports)

    def get_stats(self) -> Dict[str, object]:
        reports = self.snapshot()
        return {
            "path": str(self.path) if self.path else None,
            "total": len(reports),
            "hazards": sum(1 for r in reports if r.is_hazard),
            "repairs": sum(1 for r in reports if r.is_repair),
            "skipped_records": self.skipped_records,
        }
