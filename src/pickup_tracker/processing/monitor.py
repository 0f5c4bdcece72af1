"""
Missed-school monitoring.

Checks where the driver of an in-progress session is relative to each school
on the route around its expected arrival time:
- Within the alert window before the expected time and not near the school:
  a late-arrival warning
- Past the expected time and still not near the school: an urgent
  missed-school alert

Evaluation is pure; delivering the alerts is the caller's concern. Alerts that
were already raised for a route school are not raised again.
"""

from datetime import datetime, timedelta
from typing import Any, Iterable, List, Mapping, Optional, Set, Tuple, Union

from ..config import BaseConfig
from ..data.models import (
    AlertType,
    LocationPing,
    MissedSchoolAlert,
    PickupSession,
    Route,
    RouteSchool,
    School,
    SessionStatus,
    User,
    haversine_km,
)
from ..data.normalizer import Snapshot, index_by_id, load_collection, normalize_keys
from .base import BaseProcessor
from .export import format_clock
from .pickups import as_lookup, resolve_driver_name, resolve_route_name


def parse_clock_time(value: Optional[str], on: datetime) -> Optional[datetime]:
    """Combine an ``HH:MM`` (or ``HH:MM:SS``) time with the day of ``on``; None if malformed."""
    if not value:
        return None
    parts = str(value).strip().split(':')
    if len(parts) not in (2, 3):
        return None
    try:
        hour, minute = int(parts[0]), int(parts[1])
        return on.replace(hour=hour, minute=minute, second=0, microsecond=0)
    except ValueError:
        return None


def latest_ping(pings: Optional[Iterable[Any]]) -> Optional[LocationPing]:
    """Most recent valid ping of a collection."""
    valid = load_collection(LocationPing, pings)
    if not valid:
        return None
    return max(valid, key=lambda p: p.timestamp.timestamp())


def _alert_key(alert: Any) -> Tuple[Optional[int], Optional[int], Optional[str]]:
    if isinstance(alert, MissedSchoolAlert):
        return alert.session_id, alert.route_school_id, alert.alert_type
    data = normalize_keys(alert) if isinstance(alert, dict) else {}
    return data.get('session_id'), data.get('route_school_id'), data.get('alert_type')


class MissedSchoolMonitor(BaseProcessor):
    """Raises late-arrival and missed-school alerts for active sessions."""

    def __init__(self, settings: Optional[BaseConfig] = None):
        super().__init__("MissedSchoolMonitor", settings)
        self.near_school_radius_km = self.settings.near_school_radius_km
        self.default_threshold = self.settings.default_alert_threshold_minutes

    def evaluate(
        self,
        session: Union[PickupSession, dict],
        route_schools: Optional[Iterable[Any]],
        schools: Union[Mapping, Iterable, None],
        latest: Optional[Union[LocationPing, dict]],
        now: datetime,
        existing_alerts: Iterable[Any] = (),
        driver: Optional[User] = None,
        route: Optional[Route] = None
    ) -> List[MissedSchoolAlert]:
        """
        Alerts due for one session at ``now``.

        Args:
            session: The pickup session; only in-progress sessions are checked
            route_schools: School stops of the session's route
            schools: School collection or id lookup
            latest: The driver's most recent location ping
            now: Reference time; expected arrival times are taken on its day
            existing_alerts: Alerts already raised (models or raw dicts)
            driver: Driver details for the alert message
            route: Route details for the alert message

        Returns:
            New alerts in route order
        """
        self._reset_stats()
        loaded = load_collection(PickupSession, [session])
        if not loaded:
            self.logger.warning("Unusable session, no alerts evaluated")
            return []
        session = loaded[0]
        if session.status != SessionStatus.IN_PROGRESS:
            return []

        if isinstance(latest, dict):
            latest = latest_ping([latest])
        if latest is None:
            self.logger.debug("No driver location for session", session_id=session.id)
            return []

        school_lookup = as_lookup(schools, School)
        already_sent: Set[Tuple[Any, Any]] = set()
        for alert in existing_alerts or ():
            alert_session, route_school_id, alert_type = _alert_key(alert)
            if alert_session in (None, session.id):
                already_sent.add((route_school_id, alert_type))

        stops = [rs for rs in load_collection(RouteSchool, route_schools) if rs.route_id == session.route_id]
        stops.sort(key=lambda rs: rs.order_index)

        alerts = []
        for route_school in stops:
            self._stats.records_processed += 1
            school = school_lookup.get(route_school.school_id)
            if school is None or not school.has_coordinates:
                self._stats.records_skipped += 1
                continue

            expected = parse_clock_time(route_school.estimated_arrival_time, now)
            if expected is None:
                self.logger.warning("Malformed estimated arrival time",
                                    route_school_id=route_school.id,
                                    value=route_school.estimated_arrival_time)
                self._stats.records_skipped += 1
                continue

            threshold = route_school.alert_threshold_minutes or self.default_threshold
            window_opens = expected - timedelta(minutes=threshold)

            if now > expected:
                alert_type = AlertType.MISSED_SCHOOL
            elif now >= window_opens:
                alert_type = AlertType.LATE_ARRIVAL
            else:
                continue

            distance_km = haversine_km(latest.latitude, latest.longitude, school.latitude, school.longitude)
            if distance_km <= self.near_school_radius_km:
                continue
            if (route_school.id, alert_type.value) in already_sent:
                continue

            alerts.append(self._build_alert(
                session, route_school, school, latest, now, alert_type, distance_km, driver, route
            ))

        self._stats.records_emitted = len(alerts)
        if alerts:
            self.logger.warning("Missed school alerts raised",
                                session_id=session.id,
                                alerts=[a.alert_type for a in alerts])
        return alerts

    def evaluate_snapshot(
        self,
        snapshot: Snapshot,
        now: datetime,
        existing_alerts: Iterable[Any] = ()
    ) -> List[MissedSchoolAlert]:
        """Alerts due for every in-progress session of a snapshot."""
        existing_alerts = list(existing_alerts or ())
        users = index_by_id(snapshot.all_users)
        routes = index_by_id(snapshot.routes)
        schools = index_by_id(snapshot.schools)

        alerts = []
        for session in snapshot.sessions:
            if session.status != SessionStatus.IN_PROGRESS:
                continue
            latest = latest_ping(p for p in snapshot.pings if p.session_id == session.id)
            alerts.extend(self.evaluate(
                session,
                snapshot.route_schools,
                schools,
                latest,
                now,
                existing_alerts=existing_alerts,
                driver=users.get(session.driver_id),
                route=routes.get(session.route_id),
            ))
        return alerts

    def _build_alert(
        self,
        session: PickupSession,
        route_school: RouteSchool,
        school: School,
        latest: LocationPing,
        now: datetime,
        alert_type: AlertType,
        distance_km: float,
        driver: Optional[User],
        route: Optional[Route]
    ) -> MissedSchoolAlert:
        missed = alert_type == AlertType.MISSED_SCHOOL
        driver_name = resolve_driver_name(driver) or f"#{session.driver_id}"
        route_name = resolve_route_name(session.route_id, route)
        heading = "MISSED SCHOOL" if missed else "LATE ARRIVAL WARNING"
        action = "missing pickup at" if missed else "running late for"

        return MissedSchoolAlert(
            session_id=session.id,
            route_school_id=route_school.id,
            school_id=school.id,
            driver_id=session.driver_id,
            alert_type=alert_type,
            expected_time=route_school.estimated_arrival_time,
            actual_time=now,
            driver_latitude=latest.latitude,
            driver_longitude=latest.longitude,
            distance_km=round(distance_km, 2),
            urgent=missed,
            title=f"{heading}: {school.name}",
            message=(
                f"Driver {driver_name} on {route_name} is {action} {school.name}. "
                f"Expected: {route_school.estimated_arrival_time}, Current time: {format_clock(now)}."
            ),
        )


__all__ = ['MissedSchoolMonitor', 'parse_clock_time', 'latest_ping']
