"""Utility modules for configuration, logging, geodesy and AWS integration."""

from .response_formatter import ResponseFormatter

__all__ = [
    'ResponseFormatter'
]
