"""Hazard lifecycle and repair verification consensus engine."""

__version__ = "0.1.0"
