"""Shared fixtures for the pickup tracker test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from pickup_tracker.config import TestingConfig, clear_config_cache
from pickup_tracker.data.models import School, Student


@pytest.fixture
def settings():
    return TestingConfig()


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "testing")
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def now():
    """Fixed reference time: Friday 2024-03-15 12:00 UTC."""
    return datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def schools():
    return [
        School(id=1, name="School A", latitude=40.0, longitude=-75.0),
        School(id=2, name="School B", latitude=40.05, longitude=-75.05),
        School(id=3, name="Ungeocoded Elementary"),
    ]


@pytest.fixture
def students():
    return [
        Student(id=1, first_name="Jane", last_name="Doe", grade="3", school_id=1,
                parent_name="Mary Doe", parent_phone="555-0101"),
        Student(id=2, first_name="John", last_name="Roe", grade="5", school_id=2,
                parent_name="Rick Roe", parent_phone="555-0102", emergency_contact="Ann Roe"),
        Student(id=3, first_name="Ana", last_name="Lee", school_id=99),
    ]


def make_pings(start, points, session_id=10):
    """Pings one per (minutes_offset, lat, lon) tuple."""
    return [
        {
            "latitude": lat,
            "longitude": lon,
            "timestamp": (start + timedelta(minutes=offset)).isoformat(),
            "driverId": 7,
            "sessionId": session_id,
        }
        for offset, lat, lon in points
    ]


@pytest.fixture
def ping_factory():
    return make_pings
