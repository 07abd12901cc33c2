"""Shared modules for cephplan.

This module provides functionality used across planning and reconciling:
- Logging (structlog)
- Paths (local state and in-container layout)
"""

from .logging import configure_logging, get_logger, verbosity_to_level
from .paths import (
    CEPHPLAN_DIR,
    CONFIG_FILE,
    DEFAULT_DATA_DIR_HOST_PATH,
    osd_data_dir,
)

__all__ = [
    # Paths
    "CEPHPLAN_DIR",
    "CONFIG_FILE",
    "DEFAULT_DATA_DIR_HOST_PATH",
    "osd_data_dir",
    # Logging
    "configure_logging",
    "get_logger",
    "verbosity_to_level",
]
