"""
Completion statistics for the history and reports dashboards.

All "recent" computations are relative to an injected ``now`` so results are
reproducible; the calculator never reads the system clock.
"""

from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional

import pandas as pd

from ..config import BaseConfig
from ..data.models import (
    CompletionStatistics,
    DailyReport,
    PickupSession,
    RouteCompletionRecord,
    SessionStatus,
    StudentPickup,
    completion_percentage,
    round_half_up,
)
from ..data.normalizer import load_collection
from .base import BaseProcessor, ValidationError, align_to


BREAKDOWN_KEYS = ('route_id', 'driver_id', 'date')

BREAKDOWN_COLUMNS = ['routes', 'students_picked_up', 'total_students', 'completion_rate']


def filter_records(
    records: Iterable[RouteCompletionRecord],
    search_term: Optional[str]
) -> List[RouteCompletionRecord]:
    """
    Keep records whose driver first/last name or route name contains the term.

    Matching is case-insensitive; an empty or missing term keeps every record.
    """
    records = list(records)
    term = (search_term or '').strip().lower()
    if not term:
        return records

    matches = []
    for record in records:
        candidates = []
        if record.driver is not None:
            candidates.extend([record.driver.first_name, record.driver.last_name])
        if record.route is not None:
            candidates.append(record.route.name)
        if any(term in (value or '').lower() for value in candidates):
            matches.append(record)
    return matches


class CompletionStatisticsCalculator(BaseProcessor):
    """Computes route-level and fleet-level completion figures."""

    def __init__(self, settings: Optional[BaseConfig] = None):
        super().__init__("CompletionStatisticsCalculator", settings)
        self.recent_window = timedelta(days=self.settings.recent_window_days)
        self.on_time_threshold = self.settings.on_time_threshold_minutes

    def calculate(self, records: Optional[Iterable[Any]], now: datetime) -> CompletionStatistics:
        """
        Aggregate completion figures over route completion records.

        ``average_completion_rate`` is the rounded share of all assigned
        students that were picked up, and 0 by convention when no students
        were assigned. ``recent_routes`` counts records completed at or after
        ``now`` minus the recent window.
        """
        self._reset_stats()
        records = load_collection(RouteCompletionRecord, records)

        picked_up = sum(r.students_picked_up for r in records)
        assigned = sum(r.total_students for r in records)
        recent = sum(1 for r in records if self.is_recent(r.completed_at, now))

        statistics = CompletionStatistics(
            total_routes=len(records),
            total_students_picked_up=picked_up,
            total_students_assigned=assigned,
            average_completion_rate=completion_percentage(picked_up, assigned),
            recent_routes=recent,
        )

        self._stats.records_processed = len(records)
        self.logger.info("Completion statistics calculated",
                         routes=statistics.total_routes,
                         rate=statistics.average_completion_rate,
                         recent=statistics.recent_routes)
        return statistics

    def is_recent(self, completed_at: Optional[datetime], now: datetime) -> bool:
        """Whether a completion time falls inside the recent window."""
        if completed_at is None:
            return False
        local = align_to(completed_at, now)
        return local is not None and local >= now - self.recent_window

    def daily_report(
        self,
        sessions: Optional[Iterable[Any]],
        pickups: Optional[Iterable[Any]],
        total_routes: int = 0
    ) -> DailyReport:
        """
        Today's performance figures from today's sessions and pickups.

        Completed sessions without a known duration count as zero minutes in
        the average. A route is on time when its duration is within the on-time
        threshold.
        """
        sessions = load_collection(PickupSession, sessions)
        pickups = load_collection(StudentPickup, pickups)

        completed = [s for s in sessions if s.status == SessionStatus.COMPLETED]
        durations = [s.effective_duration_minutes or 0 for s in completed]

        average_time = round_half_up(sum(durations) / len(completed)) if completed else 0
        on_time = sum(1 for d in durations if d <= self.on_time_threshold)
        picked_up = sum(1 for p in pickups if p.is_picked_up)

        return DailyReport(
            total_routes=total_routes,
            completed_today=len(completed),
            total_students=len(pickups),
            students_picked_up=picked_up,
            average_completion_time=average_time,
            on_time_percentage=completion_percentage(on_time, len(completed)),
            pickup_success_rate=completion_percentage(picked_up, len(pickups)),
        )

    def breakdown(self, records: Optional[Iterable[Any]], by: str = 'route_id') -> pd.DataFrame:
        """
        Completion figures grouped by route, driver or date.

        Returns:
            DataFrame indexed by ``by`` with columns routes, students_picked_up,
            total_students and completion_rate, sorted by the index
        """
        if by not in BREAKDOWN_KEYS:
            raise ValidationError(f"Cannot break down by '{by}', expected one of {BREAKDOWN_KEYS}")

        records = load_collection(RouteCompletionRecord, records)
        if not records:
            return pd.DataFrame(columns=BREAKDOWN_COLUMNS, index=pd.Index([], name=by))

        df = pd.DataFrame([
            {
                by: getattr(r, by),
                'session_id': r.session_id,
                'students_picked_up': r.students_picked_up,
                'total_students': r.total_students,
            }
            for r in records
        ])

        grouped = df.groupby(by, dropna=False).agg(
            routes=('session_id', 'count'),
            students_picked_up=('students_picked_up', 'sum'),
            total_students=('total_students', 'sum'),
        )
        grouped['completion_rate'] = [
            completion_percentage(int(p), int(t))
            for p, t in zip(grouped['students_picked_up'], grouped['total_students'])
        ]
        return grouped.sort_index()


__all__ = [
    'CompletionStatisticsCalculator', 'filter_records',
    'BREAKDOWN_KEYS', 'BREAKDOWN_COLUMNS',
]
