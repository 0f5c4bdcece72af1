"""
GPS stop extraction.

Turns the breadcrumb trail of one pickup session into the stops shown on the
route timeline: periods where the vehicle stayed within a small radius for at
least a few minutes, each matched to the nearest school when one is close
enough. Short pauses (traffic lights, turns) never become stops.
"""

from typing import Any, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from ..config import BaseConfig
from ..data.models import (
    EARTH_RADIUS_KM,
    LocationPing,
    School,
    Stop,
    TrackSummary,
    haversine_km,
)
from ..data.normalizer import load_collection
from .base import BaseProcessor, GeospatialError


def haversine_m(lat, lon, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """
    Vectorized haversine distance in meters.

    ``lat``/``lon`` may be one point (distance to many) or arrays the same
    shape as ``lats``/``lons`` (element-wise distances).
    """
    lat1 = np.radians(lat)
    lat2 = np.radians(lats)
    dlat = lat2 - lat1
    dlon = np.radians(lons) - np.radians(lon)

    a = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    c = 2 * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))

    return EARTH_RADIUS_KM * 1000.0 * c


class StopExtractor(BaseProcessor):
    """Derives dwell stops and track figures from a session's location pings."""

    def __init__(self, settings: Optional[BaseConfig] = None):
        super().__init__("StopExtractor", settings)
        self.stop_radius_meters = self.settings.stop_radius_meters
        self.min_duration_seconds = self.settings.stop_min_duration_minutes * 60.0
        self.school_match_radius_meters = self.settings.school_match_radius_meters

    def prepare_pings(self, pings: Optional[Iterable[Any]]) -> List[LocationPing]:
        """Validate pings, dropping malformed ones, and sort them by time."""
        raw = list(pings or [])
        valid = load_collection(LocationPing, raw)

        self._stats.records_processed = len(raw)
        self._stats.records_skipped = len(raw) - len(valid)
        if self._stats.records_skipped:
            self.logger.debug("Dropped malformed pings", skipped=self._stats.records_skipped)

        # stable sort keeps input order for equal timestamps
        return sorted(valid, key=lambda p: p.timestamp.timestamp())

    def extract_stops(
        self,
        pings: Optional[Iterable[Any]],
        schools: Optional[Iterable[Any]] = None
    ) -> List[Stop]:
        """
        Extract stops from one session's pings.

        Args:
            pings: LocationPing models or raw ping dicts, in any order
            schools: School reference data used to label stops

        Returns:
            Stops ordered by arrival time
        """
        self._reset_stats()
        ordered = self.prepare_pings(pings)
        school_index = self._build_school_index(schools)

        if len(ordered) < 2:
            self.logger.debug("Not enough pings for stop extraction", pings=len(ordered))
            return []

        stops = []
        cluster = [ordered[0]]
        centroid = (ordered[0].latitude, ordered[0].longitude)

        for ping in ordered[1:]:
            distance_m = haversine_km(centroid[0], centroid[1], ping.latitude, ping.longitude) * 1000.0
            if distance_m <= self.stop_radius_meters:
                cluster.append(ping)
                n = len(cluster)
                centroid = (
                    centroid[0] + (ping.latitude - centroid[0]) / n,
                    centroid[1] + (ping.longitude - centroid[1]) / n,
                )
                continue

            stop = self._close_cluster(cluster, school_index, is_ongoing=False)
            if stop:
                stops.append(stop)
            cluster = [ping]
            centroid = (ping.latitude, ping.longitude)

        stop = self._close_cluster(cluster, school_index, is_ongoing=True)
        if stop:
            stops.append(stop)

        self._stats.records_emitted = len(stops)
        self.logger.info("Stop extraction completed",
                         pings=len(ordered),
                         stops=len(stops),
                         matched=sum(1 for s in stops if s.matched_school))
        return stops

    def match_school(
        self,
        latitude: float,
        longitude: float,
        schools: Optional[Iterable[Any]]
    ) -> Tuple[Optional[School], Optional[float]]:
        """Nearest school within the match radius, with its distance in meters."""
        if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
            raise GeospatialError(f"Invalid coordinate: {latitude}, {longitude}")
        return self._match(latitude, longitude, self._build_school_index(schools))

    def summarize_track(
        self,
        pings: Optional[Iterable[Any]],
        schools: Optional[Iterable[Any]] = None,
        stops: Optional[Sequence[Stop]] = None
    ) -> TrackSummary:
        """Distance, duration, speed and school-visit figures for one track."""
        ping_list = list(pings or [])
        if stops is None:
            stops = self.extract_stops(ping_list, schools)

        ordered = self.prepare_pings(ping_list)
        schools_visited = len({s.matched_school.id for s in stops if s.matched_school})

        if len(ordered) < 2:
            return TrackSummary(ping_count=len(ordered), schools_visited=schools_visited)

        lats = np.array([p.latitude for p in ordered])
        lons = np.array([p.longitude for p in ordered])
        times = np.array([p.timestamp.timestamp() for p in ordered])

        segment_km = haversine_m(lats[:-1], lons[:-1], lats[1:], lons[1:]) / 1000.0
        segment_hours = np.diff(times) / 3600.0

        total_km = float(segment_km.sum())
        duration_hours = float(times[-1] - times[0]) / 3600.0
        average_kmh = total_km / duration_hours if duration_hours > 0 else 0.0

        reported = [p.speed for p in ordered if p.speed is not None]
        if reported:
            max_kmh = max(reported)
        else:
            moving = segment_hours > 0
            max_kmh = float((segment_km[moving] / segment_hours[moving]).max()) if moving.any() else 0.0

        return TrackSummary(
            ping_count=len(ordered),
            total_distance_km=round(total_km, 2),
            duration_minutes=round(duration_hours * 60.0, 1),
            average_speed_kmh=round(average_kmh, 2),
            max_speed_kmh=round(max_kmh, 2),
            schools_visited=schools_visited,
        )

    def _close_cluster(self, cluster: List[LocationPing], school_index, is_ongoing: bool) -> Optional[Stop]:
        """Turn a cluster into a Stop if it lasted long enough."""
        if len(cluster) < 2:
            return None

        arrival = cluster[0].timestamp
        departure = cluster[-1].timestamp
        duration_seconds = departure.timestamp() - arrival.timestamp()
        if duration_seconds < self.min_duration_seconds:
            return None

        latitude = float(np.mean([p.latitude for p in cluster]))
        longitude = float(np.mean([p.longitude for p in cluster]))
        school, distance_m = self._match(latitude, longitude, school_index)

        return Stop(
            latitude=latitude,
            longitude=longitude,
            arrival_time=arrival,
            departure_time=departure,
            duration_minutes=round(duration_seconds / 60.0, 2),
            matched_school=school,
            distance_to_school_meters=round(distance_m, 1) if distance_m is not None else None,
            ping_count=len(cluster),
            is_ongoing=is_ongoing,
        )

    def _build_school_index(self, schools: Optional[Iterable[Any]]):
        """Schools with usable coordinates plus their coordinate arrays."""
        located = [s for s in load_collection(School, schools) if s.has_coordinates]
        if not located:
            return None
        return (
            located,
            np.array([s.latitude for s in located]),
            np.array([s.longitude for s in located]),
        )

    def _match(self, latitude: float, longitude: float, school_index) -> Tuple[Optional[School], Optional[float]]:
        if school_index is None:
            return None, None

        located, lats, lons = school_index
        distances = haversine_m(latitude, longitude, lats, lons)
        nearest = int(np.argmin(distances))
        if distances[nearest] > self.school_match_radius_meters:
            return None, None
        return located[nearest], float(distances[nearest])


__all__ = ['StopExtractor', 'haversine_m']
