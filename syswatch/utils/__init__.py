"""
Utility functions for syswatch
==============================

This package provides:
- Logging configuration
- Input validation for CLI flags and the keep-alive configuration
"""

from .logging import setup_logging, get_logger
from .validation import SyswatchValidator, ValidationError

__all__ = [
    'setup_logging',
    'get_logger',
    'SyswatchValidator',
    'ValidationError',
]
