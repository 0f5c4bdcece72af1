import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from pickup_tracker.data.models import (
    Coordinate,
    LocationPing,
    PickupSession,
    PickupStatus,
    RouteCompletionRecord,
    School,
    Student,
    StudentPickup,
    TimeBuckets,
    completion_percentage,
    parse_timestamp,
    round_half_up,
)


class TestCompletionPercentage:
    def test_seven_of_ten(self):
        assert completion_percentage(7, 10) == 70

    def test_zero_total_is_zero(self):
        assert completion_percentage(0, 0) == 0
        assert completion_percentage(5, 0) == 0

    def test_rounds_half_up(self):
        assert completion_percentage(1, 8) == 13  # 12.5
        assert round_half_up(2.5) == 3
        assert round_half_up(0.49) == 0

    def test_clamped_to_hundred(self):
        assert completion_percentage(12, 10) == 100


class TestRouteCompletionRecord:
    def test_accepts_camel_case(self):
        record = RouteCompletionRecord.model_validate({
            "sessionId": 1, "routeId": 2, "driverId": 3,
            "studentsPickedUp": 7, "totalStudents": 10,
            "completedAt": "2024-03-01T08:30:00Z",
        })
        assert record.students_picked_up == 7
        assert record.completion_rate == 70
        assert record.completed_at == datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc)

    def test_zero_students_rate_is_zero(self):
        record = RouteCompletionRecord(session_id=1, route_id=1, driver_id=1,
                                       students_picked_up=0, total_students=0)
        assert record.completion_rate == 0

    def test_picked_up_clamped_to_total(self):
        record = RouteCompletionRecord(session_id=1, route_id=1, driver_id=1,
                                       students_picked_up=12, total_students=10)
        assert record.students_picked_up == 10

    def test_negative_counts_rejected(self):
        with pytest.raises(ValidationError):
            RouteCompletionRecord(session_id=1, route_id=1, driver_id=1, total_students=-1)

    def test_bad_completed_at_becomes_none(self):
        record = RouteCompletionRecord(session_id=1, route_id=1, driver_id=1, completed_at="yesterday")
        assert record.completed_at is None

    def test_pickup_details_from_json_string(self):
        details = json.dumps([{"studentId": 1, "status": "picked_up"}, {"studentId": 2}])
        record = RouteCompletionRecord(session_id=1, route_id=1, driver_id=1, pickup_details=details)
        assert [p.student_id for p in record.pickup_details] == [1, 2]
        assert record.pickup_details[1].status == "pending"

    def test_malformed_pickup_details_become_empty(self):
        record = RouteCompletionRecord(session_id=1, route_id=1, driver_id=1, pickup_details="[{oops")
        assert record.pickup_details == []

    def test_embedded_driver_without_id_dropped(self):
        record = RouteCompletionRecord(session_id=1, route_id=1, driver_id=1,
                                       driver={"firstName": "Sam"})
        assert record.driver is None

    def test_to_dict_uses_camel_case(self):
        record = RouteCompletionRecord(session_id=1, route_id=2, driver_id=3)
        data = record.to_dict()
        assert data["sessionId"] == 1
        assert "session_id" not in data


class TestLocationPing:
    def test_numeric_strings_accepted(self):
        ping = LocationPing.model_validate({
            "latitude": "40.1", "longitude": "-75.2", "timestamp": "2024-03-01T08:00:00Z",
        })
        assert ping.latitude == pytest.approx(40.1)

    @pytest.mark.parametrize("lat", ["north", None, 91.0])
    def test_invalid_latitude_rejected(self, lat):
        with pytest.raises(ValidationError):
            LocationPing.model_validate({"latitude": lat, "longitude": 0, "timestamp": "2024-03-01T08:00:00Z"})

    def test_coordinate_distance(self):
        a = Coordinate(latitude=40.0, longitude=-75.0)
        b = Coordinate(latitude=40.0, longitude=-75.0)
        assert a.distance_to(b) == 0.0


class TestPickupStatus:
    def test_unknown_status_is_pending(self):
        assert PickupStatus.parse("delayed") == PickupStatus.PENDING

    def test_parse_is_case_insensitive(self):
        assert PickupStatus.parse("PICKED_UP") == PickupStatus.PICKED_UP

    def test_is_picked_up(self):
        assert StudentPickup(student_id=1, status="picked_up").is_picked_up
        assert not StudentPickup(student_id=1, status="no_show").is_picked_up


class TestPickupSession:
    def test_completed_time_alias(self):
        session = PickupSession.model_validate({
            "id": 1, "routeId": 1, "driverId": 1, "status": "completed",
            "startTime": "2024-03-01T07:00:00Z", "completedTime": "2024-03-01T07:45:00Z",
        })
        assert session.effective_duration_minutes == 45

    def test_recorded_duration_wins(self):
        session = PickupSession(id=1, route_id=1, driver_id=1, duration_minutes=30)
        assert session.effective_duration_minutes == 30


class TestReferenceModels:
    def test_student_full_name(self):
        assert Student(id=1, first_name="Jane", last_name="Doe").full_name == "Jane Doe"

    def test_grade_coerced_to_string(self):
        assert Student(id=1, grade=4).grade == "4"

    def test_school_coordinates(self):
        assert School(id=1, name="A", latitude="40.0", longitude="-75.0").has_coordinates
        assert not School(id=1, name="A", latitude="n/a", longitude="-75.0").has_coordinates


class TestParseTimestamp:
    def test_iso_with_z(self):
        assert parse_timestamp("2024-03-01T08:05:00Z") == datetime(2024, 3, 1, 8, 5, tzinfo=timezone.utc)

    def test_plain_date(self):
        assert parse_timestamp("2024-03-01") == datetime(2024, 3, 1)

    def test_epoch_milliseconds(self):
        assert parse_timestamp(1709280300000) == datetime(2024, 3, 1, 8, 5, tzinfo=timezone.utc)

    def test_epoch_seconds(self):
        assert parse_timestamp(1709280300) == datetime(2024, 3, 1, 8, 5, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "not a date", True, float("nan")])
    def test_unusable_values(self, value):
        assert parse_timestamp(value) is None


def test_time_buckets_labels():
    buckets = TimeBuckets(today=[1], older=[2, 3])
    assert list(buckets.labeled()) == ["Today", "This Week", "This Month", "Older"]
    assert buckets.total == 3
