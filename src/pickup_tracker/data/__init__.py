"""
Pickup Tracker Data Module

Pydantic models for backend records and derived summaries, plus the
normalization step every backend payload passes through.

Usage:
    from pickup_tracker.data import Snapshot

    snapshot = Snapshot.from_file("snapshot.json")
    for record in snapshot.history:
        print(record.route_id, record.completion_rate)
"""

from .models import (
    # Base classes
    BaseDataModel,

    # Geographic models
    Coordinate,
    LocationPing,
    haversine_km,

    # Reference models
    School,
    Student,
    User,
    Driver,
    Route,
    RouteSchool,

    # Operational models
    PickupStatus,
    SessionStatus,
    PickupSession,
    StudentPickup,
    RouteCompletionRecord,
    AbsenceRecord,

    # Derived models
    Stop,
    TrackSummary,
    SchoolPickupGroup,
    CompletionStatistics,
    DailyReport,
    TimeBuckets,
    AlertType,
    MissedSchoolAlert,

    # Helpers
    coerce_float,
    parse_timestamp,
    round_half_up,
    completion_percentage,
)

from .normalizer import (
    SnapshotError,
    Snapshot,
    to_snake_case,
    normalize_keys,
    parse_pickup_details,
    load_collection,
    index_by_id,
)

__all__ = [
    "BaseDataModel",
    "Coordinate", "LocationPing", "haversine_km",
    "School", "Student", "User", "Driver", "Route", "RouteSchool",
    "PickupStatus", "SessionStatus", "PickupSession", "StudentPickup",
    "RouteCompletionRecord", "AbsenceRecord",
    "Stop", "TrackSummary", "SchoolPickupGroup", "CompletionStatistics",
    "DailyReport", "TimeBuckets", "AlertType", "MissedSchoolAlert",
    "coerce_float", "parse_timestamp", "round_half_up", "completion_percentage",
    "SnapshotError", "Snapshot", "to_snake_case", "normalize_keys",
    "parse_pickup_details", "load_collection", "index_by_id",
]
