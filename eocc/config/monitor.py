"""
Monitor configuration.

Extends base configuration with monitor-specific settings.
"""

from __future__ import annotations

from eocc.config.base import BaseMonitorSettings, lazy_settings


class MonitorSettings(BaseMonitorSettings):
    """Monitor-specific configuration."""

    pass  # Empty for now, room for monitor-only settings


# Module-level singleton (lazy-loaded)
settings = lazy_settings(MonitorSettings)
