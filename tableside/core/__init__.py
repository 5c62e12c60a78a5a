"""
Core module initialization.
Exports configuration and logging utilities.
"""

from tableside.core.config import (
    EnvironmentMode,
    Settings,
    StoreBackend,
    get_settings,
    setup_logging,
)

__all__ = ["get_settings", "setup_logging", "Settings", "EnvironmentMode", "StoreBackend"]
