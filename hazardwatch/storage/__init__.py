"""Storage layer for reports, evidence photos and proximity search."""

from .report_store import ReportStore, ReportQuery
from .file_storage import FileStorage
from .proximity import ProximityIndex, ProximityMatch, nearest_address

__all__ = [
    'ReportStore',
    'ReportQuery',
    'FileStorage',
    'ProximityIndex',
    'ProximityMatch',
    'nearest_address',
]
