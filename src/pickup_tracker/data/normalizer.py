"""
Boundary normalization for backend JSON.

Every payload the route summary engine consumes passes through this module
once, so the processors only ever see validated models with snake_case
attributes. Invalid items are logged and skipped rather than failing the
whole collection.
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar, Union

import structlog
from pydantic import ValidationError

from .models import (
    BaseDataModel,
    LocationPing,
    School, Student, User, Driver, Route, RouteSchool,
    PickupSession, StudentPickup, RouteCompletionRecord, AbsenceRecord,
    coerce_pickup_list,
    parse_timestamp,
)


logger = structlog.get_logger(__name__)

ModelT = TypeVar('ModelT', bound=BaseDataModel)

_CAMEL_BOUNDARY = re.compile(r'(?<=[a-z0-9])([A-Z])')


class SnapshotError(Exception):
    """Raised when a snapshot file cannot be read."""
    pass


def to_snake_case(name: str) -> str:
    """Convert a camelCase key to snake_case (``studentsPickedUp`` -> ``students_picked_up``)."""
    return _CAMEL_BOUNDARY.sub(r'_\1', name).lower()


def normalize_keys(data: Any) -> Any:
    """Recursively convert dictionary keys to snake_case."""
    if isinstance(data, dict):
        return {
            to_snake_case(k) if isinstance(k, str) else k: normalize_keys(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [normalize_keys(item) for item in data]
    return data


def parse_pickup_details(value: Any) -> List[StudentPickup]:
    """Parse a pickup-details payload (JSON string or list) into StudentPickup models."""
    return coerce_pickup_list(value)


def load_collection(model: Type[ModelT], items: Optional[Iterable[Any]]) -> List[ModelT]:
    """
    Validate a backend collection into models.

    Args:
        model: Model class to validate each item against
        items: Raw items (dicts or model instances); None is treated as empty

    Returns:
        List of valid models in input order; invalid items are skipped
    """
    if items is None:
        return []
    if isinstance(items, (str, bytes, dict)):
        logger.warning("Expected a collection", model=model.__name__,
                       type=type(items).__name__)
        return []

    loaded = []
    skipped = 0
    for item in items:
        if isinstance(item, model):
            loaded.append(item)
            continue
        try:
            loaded.append(model.model_validate(normalize_keys(item)))
        except ValidationError as e:
            skipped += 1
            logger.debug("Skipping invalid record", model=model.__name__,
                         errors=e.error_count())

    if skipped:
        logger.warning("Skipped invalid records", model=model.__name__,
                       skipped=skipped, loaded=len(loaded))
    return loaded


def index_by_id(items: Iterable[Any]) -> Dict[Any, Any]:
    """Build an id lookup table; later duplicates win, as with a backend refetch."""
    return {item.id: item for item in items if getattr(item, 'id', None) is not None}


class Snapshot(BaseDataModel):
    """
    One complete fetch of the data the dashboards display.

    Consumers recompute every summary from a fresh snapshot instead of
    updating derived state incrementally.
    """

    history: List[RouteCompletionRecord] = []
    sessions: List[PickupSession] = []
    pickups: List[StudentPickup] = []
    pings: List[LocationPing] = []
    schools: List[School] = []
    students: List[Student] = []
    drivers: List[Driver] = []
    routes: List[Route] = []
    route_schools: List[RouteSchool] = []
    absences: List[AbsenceRecord] = []
    users: List[User] = []

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Snapshot':
        """Build a snapshot, validating each collection leniently."""
        data = data or {}
        fields = {
            'history': RouteCompletionRecord,
            'sessions': PickupSession,
            'pickups': StudentPickup,
            'pings': LocationPing,
            'schools': School,
            'students': Student,
            'drivers': Driver,
            'routes': Route,
            'route_schools': RouteSchool,
            'absences': AbsenceRecord,
            'users': User,
        }
        normalized = {to_snake_case(k): v for k, v in data.items()}
        collections = {
            name: load_collection(model, normalized.get(name))
            for name, model in fields.items()
        }

        snapshot = cls.model_construct(**collections)
        logger.info("Snapshot loaded",
                    **{name: len(items) for name, items in collections.items() if items})
        return snapshot

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'Snapshot':
        """Load a snapshot from a JSON file."""
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Failed to read snapshot", path=str(path), error=str(e))
            raise SnapshotError(f"Failed to read snapshot {path}: {e}")

        if not isinstance(data, dict):
            raise SnapshotError(f"Snapshot {path} must contain a JSON object")
        return cls.from_dict(data)

    @property
    def all_users(self) -> List[User]:
        """Drivers and other users, for name lookups."""
        return [*self.users, *self.drivers]


__all__ = [
    'SnapshotError',
    'to_snake_case', 'normalize_keys', 'parse_pickup_details', 'parse_timestamp',
    'load_collection', 'index_by_id', 'Snapshot',
]
