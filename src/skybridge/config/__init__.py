"""Configuration package for Skybridge.

Re-exports the settings accessor so that callers can write::

    from skybridge.config import get_settings
"""

from __future__ import annotations

from skybridge.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
