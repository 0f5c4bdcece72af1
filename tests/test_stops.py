import random
from datetime import datetime, timedelta, timezone

import pytest

from pickup_tracker.data.models import School
from pickup_tracker.processing.base import GeospatialError
from pickup_tracker.processing.stops import StopExtractor, haversine_m

START = datetime(2024, 3, 15, 7, 0, tzinfo=timezone.utc)


@pytest.fixture
def extractor(settings):
    return StopExtractor(settings)


@pytest.fixture
def route_pings(ping_factory):
    """Four minutes at School A, a drive, then four minutes at School B."""
    points = [(m, 40.0, -75.0) for m in range(5)]
    points += [(5, 40.01, -75.0), (6, 40.02, -75.01)]
    points += [(m, 40.05, -75.05) for m in range(10, 15)]
    return ping_factory(START, points)


def test_extracts_stops_matched_to_schools(extractor, route_pings, schools):
    stops = extractor.extract_stops(route_pings, schools)

    assert [s.matched_school.name for s in stops] == ["School A", "School B"]
    assert stops[0].duration_minutes == 4
    assert stops[0].ping_count == 5
    assert stops[0].distance_to_school_meters == 0.0
    assert not stops[0].is_ongoing
    assert stops[1].is_ongoing


def test_stops_are_monotonic(extractor, route_pings, schools):
    stops = extractor.extract_stops(route_pings, schools)

    for stop in stops:
        assert stop.arrival_time < stop.departure_time
        assert stop.departure_time - stop.arrival_time >= timedelta(minutes=3)
    arrivals = [s.arrival_time for s in stops]
    assert arrivals == sorted(arrivals)


def test_input_order_does_not_matter(extractor, route_pings, schools):
    shuffled = list(route_pings)
    random.Random(4).shuffle(shuffled)

    assert extractor.extract_stops(shuffled, schools) == extractor.extract_stops(route_pings, schools)


def test_single_ping_yields_no_stops(extractor, ping_factory):
    assert extractor.extract_stops(ping_factory(START, [(0, 40.0, -75.0)])) == []


def test_no_pings_yields_no_stops(extractor):
    assert extractor.extract_stops([]) == []
    assert extractor.extract_stops(None) == []


def test_short_pause_is_not_a_stop(extractor, ping_factory):
    points = [(0, 40.0, -75.0), (1, 40.0, -75.0), (2, 40.0, -75.0), (3, 40.02, -75.0)]
    assert extractor.extract_stops(ping_factory(START, points)) == []


def test_exactly_minimum_duration_is_a_stop(extractor, ping_factory):
    points = [(0, 40.0, -75.0), (3, 40.0, -75.0)]
    stops = extractor.extract_stops(ping_factory(START, points))
    assert len(stops) == 1
    assert stops[0].duration_minutes == 3


def test_jitter_within_radius_stays_one_stop(extractor, ping_factory):
    # ~11 m of GPS noise around the same spot
    points = [(m, 40.0 + (0.0001 if m % 2 else 0.0), -75.0) for m in range(6)]
    stops = extractor.extract_stops(ping_factory(START, points))
    assert len(stops) == 1
    assert stops[0].ping_count == 6


def test_stop_far_from_schools_is_unmatched(extractor, ping_factory, schools):
    points = [(m, 40.005, -75.0) for m in range(5)]
    stops = extractor.extract_stops(ping_factory(START, points), schools)
    assert stops[0].matched_school is None
    assert stops[0].distance_to_school_meters is None


def test_malformed_pings_are_skipped(extractor, ping_factory):
    pings = ping_factory(START, [(0, 40.0, -75.0), (4, 40.0, -75.0)])
    pings.insert(1, {"latitude": "bad", "longitude": -75.0, "timestamp": START.isoformat()})
    pings.insert(1, {"latitude": 40.0, "longitude": -75.0})

    stops = extractor.extract_stops(pings)

    assert len(stops) == 1
    assert extractor.stats.records_skipped == 2


def test_schools_without_coordinates_are_ignored(extractor):
    school, distance = extractor.match_school(40.0, -75.0, [School(id=9, name="Nowhere")])
    assert school is None and distance is None


def test_match_school_picks_nearest(extractor, schools):
    school, distance = extractor.match_school(40.0003, -75.0, schools)
    assert school.id == 1
    assert distance == pytest.approx(33.4, abs=0.5)


def test_haversine_m_vectorized():
    import numpy as np
    distances = haversine_m(40.0, -75.0, np.array([40.0, 40.01]), np.array([-75.0, -75.0]))
    assert distances[0] == 0.0
    assert distances[1] == pytest.approx(1111.95, abs=0.5)


class TestTrackSummary:
    def test_distance_and_speed(self, extractor, ping_factory):
        pings = ping_factory(START, [(0, 40.0, -75.0), (6, 40.01, -75.0)])
        summary = extractor.summarize_track(pings)

        assert summary.ping_count == 2
        assert summary.total_distance_km == 1.11
        assert summary.duration_minutes == 6.0
        assert summary.average_speed_kmh == 11.12
        assert summary.max_speed_kmh == 11.12

    def test_reported_speed_preferred(self, extractor, ping_factory):
        pings = ping_factory(START, [(0, 40.0, -75.0), (6, 40.01, -75.0)])
        pings[0]["speed"] = 35.5
        assert extractor.summarize_track(pings).max_speed_kmh == 35.5

    def test_schools_visited(self, extractor, route_pings, schools):
        assert extractor.summarize_track(route_pings, schools).schools_visited == 2

    def test_empty_track(self, extractor):
        summary = extractor.summarize_track([])
        assert summary.ping_count == 0
        assert summary.total_distance_km == 0.0


def test_match_school_rejects_invalid_coordinates(extractor, schools):
    with pytest.raises(GeospatialError):
        extractor.match_school(123.0, -75.0, schools)


def test_haversine_m_pairwise():
    import numpy as np
    lats = np.array([40.0, 40.01, 40.01])
    lons = np.array([-75.0, -75.0, -75.0])
    segments = haversine_m(lats[:-1], lons[:-1], lats[1:], lons[1:])
    assert segments.shape == (2,)
    assert segments[0] == pytest.approx(1111.95, abs=0.5)
    assert segments[1] == 0.0
