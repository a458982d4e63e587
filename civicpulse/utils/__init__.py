"""Shared utilities: settings and time helpers."""

from civicpulse.utils.config import Settings, get_settings
from civicpulse.utils.clock import utcnow

__all__ = ["Settings", "get_settings", "utcnow"]
