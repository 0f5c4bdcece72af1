"""
Tabular export formatting.

Renders route history into the CSV documents the leadership dashboard offers
for download:
- Pickup details: one row per student pickup event
- History summary: one row per route run
- Absence log: one row per reported absence

Documents are returned as text. Headers are written bare; every data field is
quoted, with embedded quotes doubled, and every row ends with a newline.
"""

import csv
import io
from datetime import date, datetime, tzinfo
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from ..config import BaseConfig
from ..data.models import (
    AbsenceRecord,
    PickupStatus,
    RouteCompletionRecord,
    School,
    Student,
    StudentPickup,
    User,
    parse_timestamp,
)
from ..data.normalizer import load_collection
from .base import BaseProcessor, ExportError, ValidationError
from .pickups import (
    as_lookup,
    pickup_school_id,
    resolve_driver_name,
    resolve_route_name,
    resolve_school_name,
    resolve_student_name,
)
from .statistics import filter_records


NOT_AVAILABLE = "N/A"
NO_NOTES = "No notes"

PICKUP_HEADERS = [
    "Child's Name",
    "Pick-Up Location",
    "Pick-Up Time",
    "Drop-Off Location",
    "Drop-Off Time",
    "Driver's Name",
    "Vehicle Information",
    "Parent/Guardian Contact Information",
    "Date",
    "Route Name",
    "Status",
    "Driver Notes",
    "Session ID",
]

HISTORY_HEADERS = [
    "Date",
    "Driver",
    "Route",
    "Completed At",
    "Students Picked Up",
    "Total Students",
    "Completion Rate",
    "Notes",
]

ABSENCE_HEADERS = [
    "Student Name",
    "School",
    "Absence Date",
    "Reason",
    "Notes",
    "Marked By",
    "Date Submitted",
    "Student Grade",
    "Student Contact",
    "Emergency Contact",
]

STATUS_LABELS = {
    PickupStatus.PICKED_UP: "Transported",
    PickupStatus.ABSENT: "Absent",
    PickupStatus.NO_SHOW: "No Show",
}

FILENAME_KINDS = ('pickups', 'history', 'absences')


# ==================== FORMATTING HELPERS ====================

def map_status(status: Any) -> str:
    """Display label of a pickup status; anything unrecognized is Pending."""
    return STATUS_LABELS.get(PickupStatus.parse(status), "Pending")


def format_clock(value: datetime) -> str:
    """12-hour clock time, e.g. ``8:05 AM``."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def format_long(value: datetime) -> str:
    """Long date and time, e.g. ``Mar 1, 2024 at 8:05 AM``."""
    return f"{value.strftime('%b')} {value.day}, {value.year} at {format_clock(value)}"


def format_us_date(value: datetime) -> str:
    """MM/DD/YYYY."""
    return value.strftime('%m/%d/%Y')


def render_document(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Join a bare header line and fully quoted data rows into CSV text."""
    buffer = io.StringIO()
    buffer.write(",".join(headers) + "\n")

    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for row in rows:
        writer.writerow(["" if value is None else str(value) for value in row])

    return buffer.getvalue()


def _as_day(value: Union[str, date, datetime, None]) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValidationError(f"Invalid date bound: {value!r}")
    return parsed.date()


# ==================== FORMATTER ====================

class TabularExportFormatter(BaseProcessor):
    """Renders route history and absences into downloadable CSV text."""

    def __init__(self, settings: Optional[BaseConfig] = None, display_tz: Optional[tzinfo] = None):
        super().__init__("TabularExportFormatter", settings)
        self.display_tz = display_tz

    def export_pickups(
        self,
        records: Optional[Iterable[Any]],
        students: Union[Mapping, Iterable, None],
        schools: Union[Mapping, Iterable, None],
        search_term: Optional[str] = None
    ) -> str:
        """
        Pickup detail export.

        Args:
            records: Route completion records (models or raw history rows)
            students: Student collection or id lookup
            schools: School collection or id lookup
            search_term: Optional driver/route name filter

        Returns:
            CSV text with one row per pickup, or one summary row for a route
            run without per-student detail
        """
        self._reset_stats()
        records = filter_records(load_collection(RouteCompletionRecord, records), search_term)
        student_lookup = as_lookup(students, Student)
        school_lookup = as_lookup(schools, School)

        rows = []
        for record in records:
            if record.pickup_details:
                for pickup in record.pickup_details:
                    rows.append(self._pickup_row(record, pickup, student_lookup, school_lookup))
            else:
                rows.append(self._summary_row(record))

        self._stats.records_processed = len(records)
        self._stats.records_emitted = len(rows)
        self.logger.info("Pickup export rendered", records=len(records), rows=len(rows))
        return render_document(PICKUP_HEADERS, rows)

    def export_history_summary(
        self,
        records: Optional[Iterable[Any]],
        search_term: Optional[str] = None
    ) -> str:
        """History export with one row per route run."""
        records = filter_records(load_collection(RouteCompletionRecord, records), search_term)

        rows = []
        for record in records:
            rows.append([
                record.date or NOT_AVAILABLE,
                resolve_driver_name(record.driver) or NOT_AVAILABLE,
                resolve_route_name(record.route_id, record.route),
                self._long_time(record.completed_at),
                record.students_picked_up,
                record.total_students,
                f"{record.completion_rate}%",
                record.notes or "None",
            ])

        self.logger.info("History export rendered", rows=len(rows))
        return render_document(HISTORY_HEADERS, rows)

    def export_absences(
        self,
        absences: Optional[Iterable[Any]],
        students: Union[Mapping, Iterable, None],
        schools: Union[Mapping, Iterable, None],
        users: Union[Mapping, Iterable, None],
        start_date: Union[str, date, None] = None,
        end_date: Union[str, date, None] = None
    ) -> str:
        """
        Absence log export.

        Absences are limited to the inclusive ``start_date``..``end_date``
        range (either bound optional) and listed newest first. Absences
        without a usable date are dropped when a bound is given.
        """
        start = _as_day(start_date)
        end = _as_day(end_date)
        if start and end and start > end:
            raise ValidationError(f"Start date {start} is after end date {end}")

        absences = load_collection(AbsenceRecord, absences)
        student_lookup = as_lookup(students, Student)
        school_lookup = as_lookup(schools, School)
        user_lookup = as_lookup(users, User)

        selected = []
        for absence in absences:
            day = absence.absence_date.date() if absence.absence_date else None
            if (start or end) and day is None:
                continue
            if start and day < start:
                continue
            if end and day > end:
                continue
            selected.append(absence)

        selected.sort(key=lambda a: a.absence_date.timestamp() if a.absence_date else float('-inf'),
                      reverse=True)

        rows = []
        for absence in selected:
            student = student_lookup.get(absence.student_id)
            school_id = student.school_id if student else None
            marked_by = user_lookup.get(absence.marked_by)

            rows.append([
                student.full_name if student and student.full_name else f"Student #{absence.student_id}",
                resolve_school_name(school_id, school_lookup) if school_id in school_lookup else "Unknown School",
                format_us_date(absence.absence_date) if absence.absence_date else "",
                absence.reason or "Not specified",
                absence.notes or "",
                self._marked_by_name(absence.marked_by, marked_by),
                self._submitted_time(absence.created_at),
                student.grade if student and student.grade else "",
                student.parent_phone if student and student.parent_phone else "",
                student.emergency_contact if student and student.emergency_contact else "",
            ])

        self.logger.info("Absence export rendered",
                         absences=len(absences), rows=len(rows),
                         start_date=str(start) if start else None,
                         end_date=str(end) if end else None)
        return render_document(ABSENCE_HEADERS, rows)

    def export_filename(
        self,
        kind: str,
        now: datetime,
        start_date: Union[str, date, None] = None,
        end_date: Union[str, date, None] = None
    ) -> str:
        """
        Download file name for an export.

        Examples:
            pickups   -> pickup-details-2024-03-01.csv
            history   -> pickup-history-2024-03-01.csv
            absences  -> absence_log_2024-02-01_to_2024-02-29_2024-03-01_08-05.csv
        """
        if kind not in FILENAME_KINDS:
            raise ValidationError(f"Unknown export kind '{kind}', expected one of {FILENAME_KINDS}")

        day = now.strftime(self.settings.export_date_format)
        if kind == 'pickups':
            return f"pickup-details-{day}.csv"
        if kind == 'history':
            return f"pickup-history-{day}.csv"

        date_range = ""
        if start_date and end_date:
            date_range = f"_{_as_day(start_date)}_to_{_as_day(end_date)}"
        return f"absence_log{date_range}_{day}_{now.strftime('%H-%M')}.csv"

    def write(self, content: str, filepath: Union[str, Path]) -> Path:
        """Write an export document to disk."""
        path = Path(filepath)
        self.logger.info("Writing export", filepath=str(path), size=len(content))
        try:
            with open(path, 'w', newline='', encoding='utf-8') as f:
                f.write(content)
        except OSError as e:
            self.logger.error("Export write failed", filepath=str(path), error=str(e))
            raise ExportError(f"Export write failed: {e}")
        return path

    # ==================== ROW BUILDERS ====================

    def _pickup_row(
        self,
        record: RouteCompletionRecord,
        pickup: StudentPickup,
        student_lookup: Mapping[Any, Student],
        school_lookup: Mapping[Any, School]
    ) -> List[str]:
        student = student_lookup.get(pickup.student_id)
        school_name = resolve_school_name(pickup_school_id(pickup, student_lookup), school_lookup)

        return [
            resolve_student_name(pickup.student_id, student_lookup),
            school_name,
            self._clock(pickup.picked_up_at),
            NOT_AVAILABLE,
            NOT_AVAILABLE,
            resolve_driver_name(record.driver) or NOT_AVAILABLE,
            self._vehicle(record),
            self._parent_contact(student),
            record.date or NOT_AVAILABLE,
            resolve_route_name(record.route_id, record.route),
            map_status(pickup.status),
            pickup.driver_notes or record.notes or NO_NOTES,
            str(record.session_id),
        ]

    def _summary_row(self, record: RouteCompletionRecord) -> List[str]:
        """Stand-in row for a route run that carries only totals."""
        complete = record.total_students > 0 and record.students_picked_up == record.total_students
        return [
            f"All Students ({record.students_picked_up}/{record.total_students} picked up)",
            NOT_AVAILABLE,
            self._clock(record.completed_at),
            NOT_AVAILABLE,
            NOT_AVAILABLE,
            resolve_driver_name(record.driver) or NOT_AVAILABLE,
            self._vehicle(record),
            NOT_AVAILABLE,
            record.date or NOT_AVAILABLE,
            resolve_route_name(record.route_id, record.route),
            map_status(PickupStatus.PICKED_UP if complete else PickupStatus.PENDING),
            record.notes or NO_NOTES,
            str(record.session_id),
        ]

    @staticmethod
    def _vehicle(record: RouteCompletionRecord) -> str:
        if record.driver is not None and record.driver.vehicle:
            return record.driver.vehicle
        if record.route is not None and record.route.vehicle:
            return record.route.vehicle
        return NOT_AVAILABLE

    @staticmethod
    def _parent_contact(student: Optional[Student]) -> str:
        if student is None:
            return NOT_AVAILABLE
        if student.parent_name and student.parent_phone:
            return f"{student.parent_name} ({student.parent_phone})"
        return student.parent_name or student.parent_phone or NOT_AVAILABLE

    @staticmethod
    def _marked_by_name(user_id: Optional[int], user: Optional[User]) -> str:
        if user is not None and user.full_name:
            return user.full_name
        return f"User #{user_id}" if user_id is not None else NOT_AVAILABLE

    def _localize(self, value: datetime) -> datetime:
        if self.display_tz is not None and value.tzinfo is not None:
            return value.astimezone(self.display_tz)
        return value

    def _clock(self, value: Optional[datetime]) -> str:
        return format_clock(self._localize(value)) if value else NOT_AVAILABLE

    def _long_time(self, value: Optional[datetime]) -> str:
        return format_long(self._localize(value)) if value else NOT_AVAILABLE

    def _submitted_time(self, value: Optional[datetime]) -> str:
        if not value:
            return ""
        value = self._localize(value)
        return f"{format_us_date(value)} {format_clock(value)}"


__all__ = [
    'TabularExportFormatter',
    'map_status', 'format_clock', 'format_long', 'format_us_date', 'render_document',
    'PICKUP_HEADERS', 'HISTORY_HEADERS', 'ABSENCE_HEADERS', 'STATUS_LABELS',
    'NOT_AVAILABLE', 'NO_NOTES',
]
