# tlsscout/events.py
"""
Callback sinks the scan core emits to.

Every sink is optional and is called synchronously on the emitting worker
thread, so a slow sink throttles the scan.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from tlsscout.models import ScanResult, ScanSummary

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class GeoStatus(str, Enum):
    CHECKING = "checking"
    READY = "ready"
    UNAVAILABLE = "unavailable"


@dataclass
class ScanCallbacks:
    on_result: Optional[Callable[[ScanResult], None]] = None
    on_progress: Optional[Callable[[int, int], None]] = None  # (current, total); total 0 when unknown
    on_log: Optional[Callable[[str, str], None]] = None  # (level, message)
    on_geo_status: Optional[Callable[[GeoStatus], None]] = None
    on_finish: Optional[Callable[[ScanSummary], None]] = None

    def emit_result(self, result: ScanResult):
        if self.on_result is not None:
            self.on_result(result)

    def emit_progress(self, current: int, total: int):
        if self.on_progress is not None:
            self.on_progress(current, total)

    def emit_log(self, level: str, message: str):
        if self.on_log is not None:
            self.on_log(level, message)

    def emit_geo_status(self, status: GeoStatus):
        if self.on_geo_status is not None:
            self.on_geo_status(status)

    def emit_finish(self, summary: ScanSummary):
        if self.on_finish is not None:
            self.on_finish(summary)


def log_to_logging(level: str, message: str):
    """on_log sink that forwards log events to the logging module."""
    logging.log(LOG_LEVELS.get(level, logging.INFO), message)


def logging_callbacks(**sinks) -> ScanCallbacks:
    """Build callbacks whose log events go to the logging module; other sinks are passed through."""
    sinks.setdefault("on_log", log_to_logging)
    return ScanCallbacks(**sinks)
