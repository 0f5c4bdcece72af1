"""
Data models for the pickup tracker.

This module provides Pydantic models for every record the route summary engine
reads or produces:
- Reference data fetched wholesale from the backend (schools, students, routes, users)
- Operational data recorded during a route run (location pings, sessions, pickups)
- Derived summaries (stops, per-school pickup groups, statistics, time buckets, alerts)

All models accept both snake_case and camelCase keys on input, so raw backend
JSON can be validated directly, and export camelCase on ``to_dict``/``to_json``.
Lenient coercion helpers used by the validators live at the bottom of the
module and are shared with the normalizer.
"""

import json
import math
from datetime import datetime, date, timedelta
from enum import Enum
from typing import Optional, Dict, List, Any, ClassVar

import structlog
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


logger = structlog.get_logger(__name__)

EARTH_RADIUS_KM = 6371.0

_datetime_adapter = TypeAdapter(datetime)


class BaseDataModel(BaseModel):
    """Base model with common functionality for all data models."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
    )

    def to_json(self, **kwargs) -> str:
        """Export model to JSON string."""
        return self.model_dump_json(by_alias=True, exclude_none=True, **kwargs)

    def to_dict(self, **kwargs) -> Dict[str, Any]:
        """Export model to dictionary."""
        return self.model_dump(by_alias=True, exclude_none=True, **kwargs)

    @classmethod
    def from_json(cls, json_str: str):
        """Create model instance from JSON string."""
        return cls.model_validate_json(json_str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Create model instance from dictionary."""
        return cls.model_validate(data)


# ==================== GEOGRAPHIC MODELS ====================

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great circle distance between two points in kilometers."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


class Coordinate(BaseDataModel):
    """Geographic coordinate."""

    latitude: float = Field(
        ...,
        ge=-90.0,
        le=90.0,
        description="Latitude in decimal degrees (-90 to 90)"
    )
    longitude: float = Field(
        ...,
        ge=-180.0,
        le=180.0,
        description="Longitude in decimal degrees (-180 to 180)"
    )

    def distance_to(self, other: 'Coordinate') -> float:
        """Calculate great circle distance to another coordinate in kilometers."""
        return haversine_km(self.latitude, self.longitude, other.latitude, other.longitude)


class LocationPing(BaseDataModel):
    """A single GPS sample reported by a driver's device while tracking is active."""

    latitude: float = Field(
        ...,
        ge=-90.0,
        le=90.0,
        description="Latitude in decimal degrees"
    )
    longitude: float = Field(
        ...,
        ge=-180.0,
        le=180.0,
        description="Longitude in decimal degrees"
    )
    timestamp: datetime = Field(
        ...,
        description="Time the position was recorded"
    )
    driver_id: Optional[int] = Field(
        None,
        description="Driver who reported the position"
    )
    session_id: Optional[int] = Field(
        None,
        description="Pickup session the position belongs to"
    )
    speed: Optional[float] = Field(
        None,
        ge=0.0,
        description="Reported speed in km/h"
    )
    heading: Optional[float] = Field(
        None,
        description="Reported bearing in degrees"
    )
    accuracy: Optional[float] = Field(
        None,
        ge=0.0,
        description="Reported horizontal accuracy in meters"
    )

    @field_validator('latitude', 'longitude', mode='before')
    @classmethod
    def validate_numeric_coordinate(cls, v):
        """Accept numeric strings as the backend stores coordinates as decimals."""
        value = coerce_float(v)
        if value is None:
            raise ValueError(f"Coordinate is not numeric: {v!r}")
        return value

    @field_validator('speed', 'heading', 'accuracy', mode='before')
    @classmethod
    def validate_optional_numbers(cls, v):
        return coerce_float(v)

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


# ==================== REFERENCE DATA MODELS ====================

class School(BaseDataModel):
    """School a route serves."""

    id: int = Field(
        ...,
        description="Unique school identifier"
    )
    name: str = Field(
        ...,
        min_length=1,
        description="School display name"
    )
    address: Optional[str] = Field(
        None,
        description="School street address"
    )
    latitude: Optional[float] = Field(
        None,
        description="School latitude, if geocoded"
    )
    longitude: Optional[float] = Field(
        None,
        description="School longitude, if geocoded"
    )
    dismissal_time: Optional[str] = Field(
        None,
        description="Dismissal time as HH:MM"
    )
    contact_phone: Optional[str] = Field(
        None,
        description="School contact phone"
    )

    @field_validator('latitude', 'longitude', mode='before')
    @classmethod
    def validate_coordinates(cls, v):
        """Unusable coordinates are treated as not geocoded."""
        return coerce_float(v)

    @property
    def has_coordinates(self) -> bool:
        return (
            self.latitude is not None and self.longitude is not None and
            -90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0
        )


class Student(BaseDataModel):
    """Student on a route roster."""

    id: int = Field(
        ...,
        description="Unique student identifier"
    )
    first_name: str = Field(
        "",
        description="Student first name"
    )
    last_name: str = Field(
        "",
        description="Student last name"
    )
    grade: Optional[str] = Field(
        None,
        description="Current grade level"
    )
    school_id: Optional[int] = Field(
        None,
        description="School the student attends"
    )
    parent_name: Optional[str] = Field(
        None,
        description="Parent or guardian name"
    )
    parent_phone: Optional[str] = Field(
        None,
        description="Parent or guardian phone"
    )
    parent_email: Optional[str] = Field(
        None,
        description="Parent or guardian email"
    )
    emergency_contact: Optional[str] = Field(
        None,
        description="Emergency contact name"
    )
    emergency_phone: Optional[str] = Field(
        None,
        description="Emergency contact phone"
    )

    @field_validator('grade', mode='before')
    @classmethod
    def validate_grade(cls, v):
        return None if v is None else str(v)

    @property
    def full_name(self) -> str:
        """Get student full name."""
        return f"{self.first_name} {self.last_name}".strip()


class User(BaseDataModel):
    """Application user (drivers and leadership staff)."""

    id: int = Field(
        ...,
        description="Unique user identifier"
    )
    first_name: str = Field(
        "",
        description="User first name"
    )
    last_name: str = Field(
        "",
        description="User last name"
    )
    role: Optional[str] = Field(
        None,
        description="User role (driver, leadership)"
    )
    phone: Optional[str] = Field(
        None,
        description="Contact phone"
    )
    vehicle: Optional[str] = Field(
        None,
        description="Vehicle description assigned to the user"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Driver(User):
    """A user with the driver role."""

    role: Optional[str] = Field(
        "driver",
        description="User role"
    )


class Route(BaseDataModel):
    """Named route run by a driver."""

    id: int = Field(
        ...,
        description="Unique route identifier"
    )
    name: str = Field(
        ...,
        min_length=1,
        description="Route display name"
    )
    driver_id: Optional[int] = Field(
        None,
        description="Default driver of the route"
    )
    vehicle: Optional[str] = Field(
        None,
        description="Vehicle assigned to the route"
    )


class RouteSchool(BaseDataModel):
    """A school stop on a route with its expected arrival time."""

    id: int = Field(
        ...,
        description="Unique route-school identifier"
    )
    route_id: int = Field(
        ...,
        description="Route the stop belongs to"
    )
    school_id: int = Field(
        ...,
        description="School visited at this stop"
    )
    order_index: int = Field(
        0,
        description="Position of the school within the route"
    )
    estimated_arrival_time: Optional[str] = Field(
        None,
        description="Expected arrival as HH:MM"
    )
    alert_threshold_minutes: Optional[int] = Field(
        None,
        ge=0,
        description="Minutes before expected arrival to start alerting"
    )


# ==================== OPERATIONAL MODELS ====================

class PickupStatus(str, Enum):
    """Pickup status of a student within a session."""
    PENDING = "pending"
    PICKED_UP = "picked_up"
    NO_SHOW = "no_show"
    ABSENT = "absent"

    @classmethod
    def parse(cls, value: Any) -> 'PickupStatus':
        """Map a raw status onto the enumeration; unknown values count as pending."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.PENDING


class SessionStatus(str, Enum):
    """Lifecycle of a pickup session."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PickupSession(BaseDataModel):
    """One driver's single-day execution of a route."""

    id: int = Field(
        ...,
        description="Unique session identifier"
    )
    route_id: int = Field(
        ...,
        description="Route being run"
    )
    driver_id: int = Field(
        ...,
        description="Driver running the route"
    )
    date: Optional[str] = Field(
        None,
        description="Session day as YYYY-MM-DD"
    )
    status: str = Field(
        SessionStatus.PENDING.value,
        description="pending, in_progress, completed or cancelled"
    )
    start_time: Optional[datetime] = Field(
        None,
        description="Time the driver started the route"
    )
    end_time: Optional[datetime] = Field(
        None,
        validation_alias=AliasChoices('completedTime', 'endTime', 'end_time', 'completed_time'),
        description="Time the route was completed"
    )
    duration_minutes: Optional[int] = Field(
        None,
        ge=0,
        validation_alias=AliasChoices('durationMinutes', 'duration', 'duration_minutes'),
        description="Route duration in minutes"
    )
    notes: Optional[str] = Field(
        None,
        description="Driver notes for the session"
    )

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def validate_times(cls, v):
        return parse_timestamp(v)

    @field_validator('status', mode='before')
    @classmethod
    def validate_status(cls, v):
        return str(v).strip().lower() if v else SessionStatus.PENDING.value

    @property
    def effective_duration_minutes(self) -> Optional[int]:
        """Recorded duration, or the start/end difference when not recorded."""
        if self.duration_minutes is not None:
            return self.duration_minutes
        if self.start_time and self.end_time:
            try:
                delta = self.end_time - self.start_time
            except TypeError:
                # naive/aware mismatch
                return None
            if delta >= timedelta(0):
                return int(delta.total_seconds() // 60)
        return None


class StudentPickup(BaseDataModel):
    """Whether a given student was collected during a session."""

    id: Optional[int] = Field(
        None,
        description="Unique pickup identifier"
    )
    session_id: Optional[int] = Field(
        None,
        description="Session the pickup belongs to"
    )
    student_id: Optional[int] = Field(
        None,
        description="Student being picked up; unknown ids resolve to placeholders"
    )
    school_id: Optional[int] = Field(
        None,
        description="School the student is collected from"
    )
    status: str = Field(
        PickupStatus.PENDING.value,
        description="pending, picked_up, no_show or absent"
    )
    picked_up_at: Optional[datetime] = Field(
        None,
        description="Time the student was collected"
    )
    driver_notes: Optional[str] = Field(
        None,
        description="Notes left by the driver for this student"
    )

    @field_validator('status', mode='before')
    @classmethod
    def validate_status(cls, v):
        return str(v).strip().lower() if v else PickupStatus.PENDING.value

    @field_validator('picked_up_at', mode='before')
    @classmethod
    def validate_picked_up_at(cls, v):
        return parse_timestamp(v)

    @property
    def pickup_status(self) -> PickupStatus:
        return PickupStatus.parse(self.status)

    @property
    def is_picked_up(self) -> bool:
        return self.pickup_status == PickupStatus.PICKED_UP


class RouteCompletionRecord(BaseDataModel):
    """Summary row of a completed route run, as stored in pickup history."""

    id: Optional[int] = Field(
        None,
        description="History row identifier"
    )
    session_id: int = Field(
        ...,
        description="Session that was completed"
    )
    route_id: int = Field(
        ...,
        description="Route that was run"
    )
    driver_id: int = Field(
        ...,
        description="Driver who ran the route"
    )
    date: Optional[str] = Field(
        None,
        description="Run day as YYYY-MM-DD"
    )
    completed_at: Optional[datetime] = Field(
        None,
        description="Completion time; None when missing or unparseable"
    )
    students_picked_up: int = Field(
        0,
        ge=0,
        description="Number of students collected"
    )
    total_students: int = Field(
        0,
        ge=0,
        description="Number of students assigned"
    )
    notes: Optional[str] = Field(
        None,
        description="Completion notes"
    )
    pickup_details: List[StudentPickup] = Field(
        default_factory=list,
        description="Per-student pickup records of the run"
    )
    driver: Optional[Driver] = Field(
        None,
        description="Driver details embedded by the history endpoint"
    )
    route: Optional[Route] = Field(
        None,
        description="Route details embedded by the history endpoint"
    )

    @field_validator('completed_at', mode='before')
    @classmethod
    def validate_completed_at(cls, v):
        """Isolate bad timestamps to this record instead of rejecting it."""
        parsed = parse_timestamp(v)
        if v not in (None, '') and parsed is None:
            logger.warning("Unparseable completion time", value=str(v))
        return parsed

    @field_validator('pickup_details', mode='before')
    @classmethod
    def validate_pickup_details(cls, v):
        return coerce_pickup_list(v)

    @field_validator('driver', 'route', mode='before')
    @classmethod
    def validate_embedded(cls, v):
        """Embedded objects missing required fields are dropped, not fatal."""
        if isinstance(v, dict) and 'id' not in v:
            return None
        return v

    @model_validator(mode='after')
    def clamp_picked_up(self):
        if self.students_picked_up > self.total_students:
            logger.warning("Picked-up count exceeds assigned students, clamping",
                           session_id=self.session_id,
                           students_picked_up=self.students_picked_up,
                           total_students=self.total_students)
            self.students_picked_up = self.total_students
        return self

    @property
    def completion_rate(self) -> int:
        """Completion percentage of this run (0 when no students were assigned)."""
        return completion_percentage(self.students_picked_up, self.total_students)


class AbsenceRecord(BaseDataModel):
    """A student absence reported ahead of a pickup."""

    id: Optional[int] = Field(
        None,
        description="Absence identifier"
    )
    student_id: int = Field(
        ...,
        description="Absent student"
    )
    absence_date: Optional[datetime] = Field(
        None,
        description="Day of the absence"
    )
    reason: Optional[str] = Field(
        None,
        description="Reported reason"
    )
    notes: Optional[str] = Field(
        None,
        description="Free-form notes"
    )
    marked_by: Optional[int] = Field(
        None,
        description="User who recorded the absence"
    )
    created_at: Optional[datetime] = Field(
        None,
        description="Time the absence was submitted"
    )

    @field_validator('absence_date', 'created_at', mode='before')
    @classmethod
    def validate_dates(cls, v):
        return parse_timestamp(v)


# ==================== DERIVED MODELS ====================

class Stop(BaseDataModel):
    """A dwell period in a GPS track, optionally matched to a school."""

    latitude: float = Field(
        ...,
        description="Centroid latitude of the dwell"
    )
    longitude: float = Field(
        ...,
        description="Centroid longitude of the dwell"
    )
    arrival_time: datetime = Field(
        ...,
        description="First ping of the dwell"
    )
    departure_time: datetime = Field(
        ...,
        description="Last ping of the dwell"
    )
    duration_minutes: float = Field(
        ...,
        ge=0.0,
        description="Dwell duration in minutes"
    )
    matched_school: Optional[School] = Field(
        None,
        description="Nearest school within the match radius"
    )
    distance_to_school_meters: Optional[float] = Field(
        None,
        description="Distance from the centroid to the matched school"
    )
    ping_count: int = Field(
        0,
        ge=0,
        description="Number of pings inside the dwell"
    )
    is_ongoing: bool = Field(
        False,
        description="Dwell was still in progress when the track ended"
    )


class TrackSummary(BaseDataModel):
    """Distance and speed figures for one session's GPS track."""

    ping_count: int = 0
    total_distance_km: float = 0.0
    duration_minutes: float = 0.0
    average_speed_kmh: float = 0.0
    max_speed_kmh: float = 0.0
    schools_visited: int = 0


class SchoolPickupGroup(BaseDataModel):
    """Pickups of one school split into collected and not collected."""

    school_name: str = Field(
        ...,
        description="Resolved school display name"
    )
    school_id: Optional[int] = Field(
        None,
        description="School identifier, when known"
    )
    picked_up: List[StudentPickup] = Field(
        default_factory=list,
        description="Pickups with status picked_up"
    )
    not_picked_up: List[StudentPickup] = Field(
        default_factory=list,
        description="Pickups with any other status"
    )

    @property
    def total(self) -> int:
        return len(self.picked_up) + len(self.not_picked_up)


class CompletionStatistics(BaseDataModel):
    """Fleet-level completion figures for the history dashboard."""

    total_routes: int = 0
    total_students_picked_up: int = 0
    total_students_assigned: int = 0
    average_completion_rate: int = Field(
        0,
        ge=0,
        le=100,
        description="Rounded percentage of assigned students picked up"
    )
    recent_routes: int = Field(
        0,
        description="Routes completed within the recent window"
    )


class DailyReport(BaseDataModel):
    """Today's performance figures for the admin reports screen."""

    total_routes: int = 0
    completed_today: int = 0
    total_students: int = 0
    students_picked_up: int = 0
    average_completion_time: int = Field(
        0,
        description="Average completed-route duration in minutes"
    )
    on_time_percentage: int = Field(
        0,
        description="Share of completed routes within the on-time threshold"
    )
    pickup_success_rate: int = Field(
        0,
        description="Share of today's students picked up"
    )


class TimeBuckets(BaseDataModel):
    """Records partitioned into Today / This Week / This Month / Older."""

    today: List[Any] = Field(default_factory=list)
    this_week: List[Any] = Field(default_factory=list)
    this_month: List[Any] = Field(default_factory=list)
    older: List[Any] = Field(default_factory=list)

    LABELS: ClassVar[Dict[str, str]] = {
        'today': 'Today',
        'this_week': 'This Week',
        'this_month': 'This Month',
        'older': 'Older',
    }

    @property
    def total(self) -> int:
        return len(self.today) + len(self.this_week) + len(self.this_month) + len(self.older)

    def labeled(self) -> Dict[str, List[Any]]:
        """Buckets keyed by display label, in display order."""
        return {label: getattr(self, name) for name, label in self.LABELS.items()}


class AlertType(str, Enum):
    """Kinds of missed-school alerts."""
    LATE_ARRIVAL = "late_arrival"
    MISSED_SCHOOL = "missed_school"


class MissedSchoolAlert(BaseDataModel):
    """Alert raised when a driver is not near a school around its pickup time."""

    session_id: int
    route_school_id: int
    school_id: int
    driver_id: int
    alert_type: AlertType
    expected_time: str
    actual_time: datetime
    driver_latitude: float
    driver_longitude: float
    distance_km: float
    urgent: bool = False
    title: str = ""
    message: str = ""


# ==================== COERCION HELPERS ====================

def coerce_float(value: Any) -> Optional[float]:
    """Convert numbers and numeric strings to float; anything else becomes None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp leniently.

    Accepts datetimes, dates, ISO-8601 strings (including a trailing ``Z``) and
    epoch numbers (seconds, or milliseconds when the value is large enough).
    Returns None instead of raising on anything unparseable.
    """
    if value is None or value == '' or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value):
            return None
        # JavaScript clients send epoch milliseconds
        seconds = value / 1000.0 if abs(value) >= 1e11 else value
        try:
            return _datetime_adapter.validate_python(seconds)
        except ValidationError:
            return None
    if isinstance(value, str):
        value = value.strip()
        try:
            return _datetime_adapter.validate_python(value)
        except ValidationError:
            pass
        # plain YYYY-MM-DD day columns
        try:
            day = date.fromisoformat(value)
        except ValueError:
            return None
        return datetime(day.year, day.month, day.day)
    return None


def coerce_pickup_list(value: Any) -> List[Any]:
    """
    Coerce a pickup-details payload into a list of StudentPickup.

    History rows carry pickup details as a JSON-encoded string; unparseable
    payloads degrade to an empty list and invalid items are skipped.
    """
    if value is None or value == '':
        return []
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError as e:
            logger.warning("Unparseable pickup details", error=str(e))
            return []
    if not isinstance(value, list):
        logger.warning("Pickup details is not a list", type=type(value).__name__)
        return []

    pickups = []
    for item in value:
        if isinstance(item, StudentPickup):
            pickups.append(item)
            continue
        try:
            pickups.append(StudentPickup.model_validate(item))
        except ValidationError as e:
            logger.debug("Skipping invalid pickup detail", error=str(e))
    return pickups


def round_half_up(value: float) -> int:
    """Round .5 upwards, as the dashboards do, instead of to the nearest even number."""
    return int(math.floor(value + 0.5))


def completion_percentage(picked_up: int, total: int) -> int:
    """
    Percentage of ``total`` that was picked up, rounded half up.

    Defined as 0 when ``total`` is 0 so dashboards never show NaN.
    """
    if not total or total <= 0:
        return 0
    ratio = max(0.0, min(1.0, picked_up / total))
    return round_half_up(ratio * 100)


# Export all models for easy import
__all__ = [
    # Base classes
    'BaseDataModel',

    # Geographic models
    'Coordinate', 'LocationPing', 'haversine_km', 'EARTH_RADIUS_KM',

    # Reference models
    'School', 'Student', 'User', 'Driver', 'Route', 'RouteSchool',

    # Operational models
    'PickupStatus', 'SessionStatus', 'PickupSession', 'StudentPickup',
    'RouteCompletionRecord', 'AbsenceRecord',

    # Derived models
    'Stop', 'TrackSummary', 'SchoolPickupGroup', 'CompletionStatistics',
    'DailyReport', 'TimeBuckets', 'AlertType', 'MissedSchoolAlert',

    # Coercion helpers
    'coerce_float', 'parse_timestamp', 'coerce_pickup_list',
    'round_half_up', 'completion_percentage',
]
