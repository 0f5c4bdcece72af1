"""
Pickup Tracker Processing Module

This module provides the route summary engine: pure processors that turn
validated snapshot data into the summaries and exports the dashboards show.

Usage:
    from pickup_tracker.processing import StopExtractor, CompletionStatisticsCalculator

    stops = StopExtractor().extract_stops(snapshot.pings, snapshot.schools)
    stats = CompletionStatisticsCalculator().calculate(snapshot.history, now)

Features:
- Dwell stop extraction with school matching
- Per-school pickup grouping and status counts
- Completion statistics, daily reports and pandas breakdowns
- Today / This Week / This Month / Older bucketing
- CSV exports with unconditional field quoting
- Late-arrival and missed-school alerts
"""

from .base import (
    # Exception classes
    ProcessingError,
    ValidationError,
    GeospatialError,
    ExportError,

    # Utility classes
    ProcessingStats,
    BaseProcessor,
    align_to,
)

from .stops import StopExtractor, haversine_m

from .pickups import (
    PickupAggregator,
    UNKNOWN_STUDENT,
    UNKNOWN_SCHOOL,
    as_lookup,
    pickup_school_id,
    resolve_student_name,
    resolve_school_name,
    resolve_driver_name,
    resolve_route_name,
)

from .statistics import (
    CompletionStatisticsCalculator,
    filter_records,
    BREAKDOWN_KEYS,
    BREAKDOWN_COLUMNS,
)

from .time_windows import TimeWindowGrouper, record_timestamp

from .export import (
    TabularExportFormatter,
    map_status,
    render_document,
    PICKUP_HEADERS,
    HISTORY_HEADERS,
    ABSENCE_HEADERS,
)

from .monitor import MissedSchoolMonitor, latest_ping, parse_clock_time

__all__ = [
    # Exceptions
    "ProcessingError", "ValidationError", "GeospatialError", "ExportError",

    # Base
    "ProcessingStats", "BaseProcessor", "align_to",

    # Processors
    "StopExtractor", "PickupAggregator", "CompletionStatisticsCalculator",
    "TimeWindowGrouper", "TabularExportFormatter", "MissedSchoolMonitor",

    # Helpers
    "haversine_m", "as_lookup", "pickup_school_id",
    "resolve_student_name", "resolve_school_name", "resolve_driver_name", "resolve_route_name",
    "filter_records", "record_timestamp", "map_status", "render_document",
    "latest_ping", "parse_clock_time",

    # Constants
    "UNKNOWN_STUDENT", "UNKNOWN_SCHOOL", "BREAKDOWN_KEYS", "BREAKDOWN_COLUMNS",
    "PICKUP_HEADERS", "HISTORY_HEADERS", "ABSENCE_HEADERS",
]
