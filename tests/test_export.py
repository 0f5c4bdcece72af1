import csv
import io
from datetime import datetime, timedelta, timezone

import pytest

from pickup_tracker.data.models import Student, User
from pickup_tracker.processing.base import ExportError, ValidationError
from pickup_tracker.processing.export import (
    ABSENCE_HEADERS,
    HISTORY_HEADERS,
    PICKUP_HEADERS,
    TabularExportFormatter,
    format_clock,
    format_long,
    map_status,
    render_document,
)

PICKUP_HEADER_LINE = (
    "Child's Name,Pick-Up Location,Pick-Up Time,Drop-Off Location,Drop-Off Time,"
    "Driver's Name,Vehicle Information,Parent/Guardian Contact Information,Date,"
    "Route Name,Status,Driver Notes,Session ID"
)


@pytest.fixture
def formatter(settings):
    return TabularExportFormatter(settings)


@pytest.fixture
def history():
    return [
        {
            "sessionId": 10,
            "routeId": 1,
            "driverId": 7,
            "date": "2024-03-01",
            "completedAt": "2024-03-01T08:30:00Z",
            "studentsPickedUp": 1,
            "totalStudents": 2,
            "pickupDetails": [
                {"studentId": 1, "status": "picked_up", "pickedUpAt": "2024-03-01T08:05:00Z"},
                {"studentId": 2, "status": "no_show", "driverNotes": "Not at stop"},
            ],
            "driver": {"id": 7, "firstName": "Sam", "lastName": "Park"},
            "route": {"id": 1, "name": "North Loop", "vehicle": "Bus 12"},
        },
        {
            "sessionId": 11,
            "routeId": 2,
            "driverId": 8,
            "completedAt": "2024-03-01T08:30:00Z",
            "studentsPickedUp": 7,
            "totalStudents": 10,
            "notes": "Late start",
        },
    ]


def parse(document):
    return list(csv.reader(io.StringIO(document)))


class TestExportPickups:
    def test_exact_document(self, formatter, history, students, schools):
        document = formatter.export_pickups(history[:1], students, schools)

        assert document == "\n".join([
            PICKUP_HEADER_LINE,
            '"Jane Doe","School A","8:05 AM","N/A","N/A","Sam Park","Bus 12",'
            '"Mary Doe (555-0101)","2024-03-01","North Loop","Transported","No notes","10"',
            '"John Roe","School B","N/A","N/A","N/A","Sam Park","Bus 12",'
            '"Rick Roe (555-0102)","2024-03-01","North Loop","No Show","Not at stop","10"',
        ]) + "\n"

    def test_header_is_unquoted(self, formatter, students, schools):
        assert formatter.export_pickups([], students, schools) == PICKUP_HEADER_LINE + "\n"

    def test_summary_row_without_details(self, formatter, history, students, schools):
        rows = parse(formatter.export_pickups(history[1:], students, schools))

        assert rows[1] == [
            "All Students (7/10 picked up)", "N/A", "8:30 AM", "N/A", "N/A", "N/A", "N/A",
            "N/A", "N/A", "Route 2", "Pending", "Late start", "11",
        ]

    def test_embedded_quotes_doubled(self, formatter, history, schools):
        students = [Student(id=1, first_name='Jane "JJ"', last_name="Doe", school_id=1)]
        document = formatter.export_pickups(history[:1], students, schools)

        assert '"Jane ""JJ"" Doe"' in document
        assert parse(document)[1][0] == 'Jane "JJ" Doe'

    def test_every_field_quoted(self, formatter, history, students, schools):
        for line in formatter.export_pickups(history, students, schools).splitlines()[1:]:
            assert line.startswith('"') and line.endswith('"')
            assert len(parse(line)[0]) == len(PICKUP_HEADERS)

    def test_record_notes_fall_back(self, formatter, history, students, schools):
        history[0]["notes"] = "Icy roads"
        rows = parse(formatter.export_pickups(history[:1], students, schools))
        assert [row[11] for row in rows[1:]] == ["Icy roads", "Not at stop"]

    def test_unknown_student(self, formatter, history, students, schools):
        history[0]["pickupDetails"] = [{"studentId": 404, "schoolId": 2, "status": "absent"}]
        row = parse(formatter.export_pickups(history[:1], students, schools))[1]
        assert row[:3] == ["Unknown Student", "School B", "N/A"]
        assert row[7] == "N/A"
        assert row[10] == "Absent"

    def test_pickup_without_student_keeps_its_row(self, formatter, history, students, schools):
        history[0]["pickupDetails"].append({"status": "absent"})
        rows = parse(formatter.export_pickups(history[:1], students, schools))

        assert len(rows) == 4
        assert rows[3][:3] == ["Unknown Student", "Unknown School", "N/A"]
        assert rows[3][7] == "N/A"
        assert rows[3][10] == "Absent"

    def test_search_term(self, formatter, history, students, schools):
        rows = parse(formatter.export_pickups(history, students, schools, search_term="north"))
        assert {row[12] for row in rows[1:]} == {"10"}

    def test_display_timezone(self, settings, history, students, schools):
        formatter = TabularExportFormatter(settings, display_tz=timezone(timedelta(hours=-5)))
        rows = parse(formatter.export_pickups(history[:1], students, schools))
        assert rows[1][2] == "3:05 AM"


class TestExportHistory:
    def test_rows(self, formatter, history):
        rows = parse(formatter.export_history_summary(history))

        assert rows[0] == HISTORY_HEADERS
        assert rows[1] == ["2024-03-01", "Sam Park", "North Loop", "Mar 1, 2024 at 8:30 AM",
                           "1", "2", "50%", "None"]
        assert rows[2] == ["N/A", "N/A", "Route 2", "Mar 1, 2024 at 8:30 AM",
                           "7", "10", "70%", "Late start"]

    def test_zero_students(self, formatter):
        rows = parse(formatter.export_history_summary([
            {"sessionId": 1, "routeId": 1, "driverId": 1, "totalStudents": 0}
        ]))
        assert rows[1][3] == "N/A"
        assert rows[1][6] == "0%"


class TestExportAbsences:
    @pytest.fixture
    def absences(self):
        return [
            {"id": 1, "studentId": 1, "absenceDate": "2024-03-01", "reason": "Sick",
             "markedBy": 100, "createdAt": "2024-02-29T18:15:00Z"},
            {"id": 2, "studentId": 2, "absenceDate": "2024-03-05", "notes": 'Trip "abroad"',
             "markedBy": 999, "createdAt": "2024-03-04T07:00:00Z"},
            {"id": 3, "studentId": 404, "absenceDate": "2024-02-10"},
        ]

    @pytest.fixture
    def users(self):
        return [User(id=100, first_name="Lee", last_name="Admin")]

    def test_newest_first(self, formatter, absences, students, schools, users):
        rows = parse(formatter.export_absences(absences, students, schools, users))

        assert rows[0] == ABSENCE_HEADERS
        assert rows[1] == ["John Roe", "School B", "03/05/2024", "Not specified", 'Trip "abroad"',
                           "User #999", "03/04/2024 7:00 AM", "5", "555-0102", "Ann Roe"]
        assert rows[2] == ["Jane Doe", "School A", "03/01/2024", "Sick", "",
                           "Lee Admin", "02/29/2024 6:15 PM", "3", "555-0101", ""]
        assert rows[3] == ["Student #404", "Unknown School", "02/10/2024", "Not specified", "",
                           "N/A", "", "", "", ""]

    def test_quotes_doubled(self, formatter, absences, students, schools, users):
        document = formatter.export_absences(absences, students, schools, users)
        assert '"Trip ""abroad"""' in document

    def test_inclusive_date_range(self, formatter, absences, students, schools, users):
        rows = parse(formatter.export_absences(absences, students, schools, users,
                                               start_date="2024-03-01", end_date="2024-03-05"))
        assert [row[2] for row in rows[1:]] == ["03/05/2024", "03/01/2024"]

    def test_open_ended_range(self, formatter, absences, students, schools, users):
        rows = parse(formatter.export_absences(absences, students, schools, users, end_date="2024-03-01"))
        assert [row[2] for row in rows[1:]] == ["03/01/2024", "02/10/2024"]

    def test_inverted_range(self, formatter, absences, students, schools, users):
        with pytest.raises(ValidationError):
            formatter.export_absences(absences, students, schools, users,
                                      start_date="2024-03-05", end_date="2024-03-01")


class TestFilename:
    def test_history(self, formatter, now):
        assert formatter.export_filename("history", now) == "pickup-history-2024-03-15.csv"

    def test_pickups(self, formatter, now):
        assert formatter.export_filename("pickups", now) == "pickup-details-2024-03-15.csv"

    def test_absences(self, formatter, now):
        assert formatter.export_filename("absences", now) == "absence_log_2024-03-15_12-00.csv"
        assert (formatter.export_filename("absences", now, "2024-03-01", "2024-03-04")
                == "absence_log_2024-03-01_to_2024-03-04_2024-03-15_12-00.csv")

    def test_unknown_kind(self, formatter, now):
        with pytest.raises(ValidationError):
            formatter.export_filename("weather", now)


def test_write(formatter, tmp_path):
    path = formatter.write("a,b\n", tmp_path / "out.csv")
    assert path.read_text(encoding="utf-8") == "a,b\n"


def test_write_failure(formatter, tmp_path):
    with pytest.raises(ExportError):
        formatter.write("a,b\n", tmp_path / "missing" / "out.csv")


@pytest.mark.parametrize("status,label", [
    ("picked_up", "Transported"),
    ("absent", "Absent"),
    ("no_show", "No Show"),
    ("pending", "Pending"),
    ("teleported", "Pending"),
    (None, "Pending"),
])
def test_map_status(status, label):
    assert map_status(status) == label


@pytest.mark.parametrize("hour,minute,expected", [
    (0, 5, "12:05 AM"),
    (8, 5, "8:05 AM"),
    (12, 0, "12:00 PM"),
    (23, 59, "11:59 PM"),
])
def test_format_clock(hour, minute, expected):
    assert format_clock(datetime(2024, 3, 1, hour, minute)) == expected


def test_format_long():
    assert format_long(datetime(2024, 12, 9, 15, 4)) == "Dec 9, 2024 at 3:04 PM"


def test_render_document_empty_values():
    assert render_document(["A", "B"], [[None, 3]]) == 'A,B\n"","3"\n'
