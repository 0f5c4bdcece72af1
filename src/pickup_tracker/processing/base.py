"""
Shared processing infrastructure.

Every component of the route summary engine is a processor: a stateless
object configured once from settings whose methods are pure functions of
their inputs. Processors only raise for programmer errors; bad data is logged
and degraded.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog

from ..config import BaseConfig, get_settings


logger = structlog.get_logger(__name__)


class ProcessingError(Exception):
    """Base exception for data processing errors."""
    pass


class ValidationError(ProcessingError):
    """Raised when processor arguments are invalid."""
    pass


class GeospatialError(ProcessingError):
    """Raised when geospatial operations fail."""
    pass


class ExportError(ProcessingError):
    """Raised when an export cannot be produced."""
    pass


@dataclass
class ProcessingStats:
    """Counters for the last run of a processor."""
    records_processed: int = 0
    records_skipped: int = 0
    records_emitted: int = 0

    @property
    def skip_rate(self) -> float:
        """Percentage of input records that were skipped."""
        if self.records_processed == 0:
            return 0.0
        return (self.records_skipped / self.records_processed) * 100


class BaseProcessor:
    """Base class for all data processors."""

    def __init__(self, name: str, settings: Optional[BaseConfig] = None):
        self.name = name
        self.settings = settings or get_settings()
        self.logger = structlog.get_logger(f"{__name__}.{name}")
        self._stats = ProcessingStats()

    @property
    def stats(self) -> ProcessingStats:
        """Get statistics of the last run."""
        return self._stats

    def _reset_stats(self):
        """Reset processing statistics."""
        self._stats = ProcessingStats()


def align_to(timestamp: datetime, now: datetime) -> Optional[datetime]:
    """
    Express ``timestamp`` in the same timezone convention as ``now``.

    Aware timestamps are converted into ``now``'s zone (system local time when
    ``now`` is naive); naive timestamps are taken to already be in that zone.
    Returns None when the conversion falls outside the representable range.
    """
    try:
        if now.tzinfo is not None:
            if timestamp.tzinfo is None:
                return timestamp.replace(tzinfo=now.tzinfo)
            return timestamp.astimezone(now.tzinfo)
        if timestamp.tzinfo is not None:
            return timestamp.astimezone().replace(tzinfo=None)
        return timestamp
    except (OverflowError, OSError, ValueError):
        return None


__all__ = [
    'ProcessingError', 'ValidationError', 'GeospatialError', 'ExportError',
    'ProcessingStats', 'BaseProcessor', 'align_to',
]
