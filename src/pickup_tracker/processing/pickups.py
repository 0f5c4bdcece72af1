"""
Pickup aggregation.

Joins a route run's per-student pickup records against the student and school
reference tables. Two views are produced because the dashboards disagree on
how to treat absences: the route breakdown only distinguishes picked up from
not picked up, while the status view keeps every status separate.
"""

from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ..config import BaseConfig
from ..data.models import (
    PickupStatus,
    Route,
    School,
    SchoolPickupGroup,
    Student,
    StudentPickup,
    User,
)
from ..data.normalizer import index_by_id, load_collection, parse_pickup_details
from .base import BaseProcessor


UNKNOWN_STUDENT = "Unknown Student"
UNKNOWN_SCHOOL = "Unknown School"


def as_lookup(items: Union[Mapping[Any, Any], Iterable[Any], None], model) -> Mapping[Any, Any]:
    """Accept either an id lookup table or a raw collection."""
    if items is None:
        return {}
    if isinstance(items, Mapping):
        return items
    return index_by_id(load_collection(model, items))


def pickup_school_id(pickup: StudentPickup, student_lookup: Mapping[Any, Student]) -> Optional[int]:
    """The student's school; the pickup's own school id when the student is unknown."""
    student = student_lookup.get(pickup.student_id)
    if student is not None and student.school_id is not None:
        return student.school_id
    return pickup.school_id


def resolve_student_name(student_id: Any, students: Union[Mapping, Iterable, None]) -> str:
    """Student full name, or the unknown-student placeholder."""
    student = as_lookup(students, Student).get(student_id)
    if student is None or not student.full_name:
        return UNKNOWN_STUDENT
    return student.full_name


def resolve_school_name(school_id: Any, schools: Union[Mapping, Iterable, None]) -> str:
    """School name, ``School {id}`` when the id is unknown, or the unknown-school placeholder."""
    if school_id is None:
        return UNKNOWN_SCHOOL
    school = as_lookup(schools, School).get(school_id)
    return school.name if school else f"School {school_id}"


def resolve_driver_name(driver: Optional[User]) -> Optional[str]:
    """Driver full name, or None when unknown."""
    if driver is None or not driver.full_name:
        return None
    return driver.full_name


def resolve_route_name(route_id: Any, route: Optional[Route] = None) -> str:
    """Route name, or ``Route {id}``."""
    if route is not None and route.name:
        return route.name
    return f"Route {route_id}"


class PickupAggregator(BaseProcessor):
    """Groups pickup records of a route run by school."""

    def __init__(self, settings: Optional[BaseConfig] = None):
        super().__init__("PickupAggregator", settings)

    def group_by_school(
        self,
        pickup_details: Any,
        students: Union[Mapping, Iterable, None],
        schools: Union[Mapping, Iterable, None]
    ) -> Dict[str, SchoolPickupGroup]:
        """
        Split pickups into picked up / not picked up per school.

        A pickup counts as picked up only when its status is ``picked_up``;
        pending, no-show and absent pickups all land in ``not_picked_up``.

        Args:
            pickup_details: StudentPickup list, raw dicts, or a JSON-encoded string
            students: Student collection or id lookup
            schools: School collection or id lookup

        Returns:
            Groups keyed by school display name, in first-seen order
        """
        self._reset_stats()
        pickups = parse_pickup_details(pickup_details)
        student_lookup = as_lookup(students, Student)
        school_lookup = as_lookup(schools, School)

        groups: Dict[str, SchoolPickupGroup] = OrderedDict()
        for pickup in pickups:
            school_id = pickup_school_id(pickup, student_lookup)
            school_name = resolve_school_name(school_id, school_lookup)

            group = groups.get(school_name)
            if group is None:
                group = SchoolPickupGroup(school_name=school_name, school_id=school_id)
                groups[school_name] = group

            if pickup.is_picked_up:
                group.picked_up.append(pickup)
            else:
                group.not_picked_up.append(pickup)

        self._stats.records_processed = len(pickups)
        self._stats.records_emitted = len(groups)
        self.logger.debug("Grouped pickups by school", pickups=len(pickups), schools=len(groups))
        return groups

    def count_by_status(
        self,
        pickup_details: Any,
        students: Union[Mapping, Iterable, None],
        schools: Union[Mapping, Iterable, None]
    ) -> Dict[str, Dict[PickupStatus, int]]:
        """
        Count pickups per school for every status separately.

        Unlike ``group_by_school`` this keeps ``no_show`` and ``absent`` apart.
        Unknown statuses are counted as pending.
        """
        pickups = parse_pickup_details(pickup_details)
        student_lookup = as_lookup(students, Student)
        school_lookup = as_lookup(schools, School)

        counts: Dict[str, Dict[PickupStatus, int]] = OrderedDict()
        for pickup in pickups:
            school_name = resolve_school_name(pickup_school_id(pickup, student_lookup), school_lookup)
            per_status = counts.setdefault(school_name, {status: 0 for status in PickupStatus})
            per_status[pickup.pickup_status] += 1

        return counts

    def resolve_names(
        self,
        pickups: List[StudentPickup],
        students: Union[Mapping, Iterable, None]
    ) -> List[str]:
        """Display names of the students behind ``pickups``."""
        student_lookup = as_lookup(students, Student)
        return [resolve_student_name(p.student_id, student_lookup) for p in pickups]


__all__ = [
    'PickupAggregator',
    'as_lookup', 'pickup_school_id',
    'UNKNOWN_STUDENT', 'UNKNOWN_SCHOOL',
    'resolve_student_name', 'resolve_school_name', 'resolve_driver_name', 'resolve_route_name',
]
