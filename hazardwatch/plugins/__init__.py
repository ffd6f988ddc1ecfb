"""Semantic Kernel plugins for the forensics oracle."""

from .forensics import (
    BedrockForensicsPlugin,
    ForensicsOracle,
    build_location_context,
    parse_repair_audit,
    parse_triage,
)

__all__ = [
    'BedrockForensicsPlugin',
    'ForensicsOracle',
    'build_location_context',
    'parse_repair_audit',
    'parse_triage',
]
