"""
Core application components.

This module contains the configuration and logging foundations shared by the
cache services.
"""

from .config import Settings, get_settings
from .logging import get_contextual_logger, get_logger, setup_structured_logging

__all__ = [
    "Settings",
    "get_settings",
    "setup_structured_logging",
    "get_logger",
    "get_contextual_logger",
]
