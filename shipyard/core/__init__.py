"""
shipyard.core - Foundation layer for the shipyard CLI.

Exports logging, path helpers and timing utilities.
"""

from shipyard.core.utils import (
    # Logging
    log,
    Logger,
    # Constants
    CONFIG_FILENAME,
    CACHE_DIRNAME,
    # Path utilities
    find_config,
    has_files,
    # Runtime utilities
    run_cmd,
    tail,
)
from shipyard.core.timing import format_duration, timed, timing_summary

__all__ = [
    "log",
    "Logger",
    "CONFIG_FILENAME",
    "CACHE_DIRNAME",
    "find_config",
    "has_files",
    "run_cmd",
    "tail",
    "format_duration",
    "timed",
    "timing_summary",
]
