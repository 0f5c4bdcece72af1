"""
Time-window grouping for history views.

Buckets dated records into Today / This Week / This Month / Older relative to
an injected reference time. Calendar comparisons use local date components,
so a record completed 23 hours ago on the previous day is not "today".
"""

from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from ..config import BaseConfig
from ..data.models import TimeBuckets, parse_timestamp
from .base import BaseProcessor, align_to


def record_timestamp(record: Any, timestamp_field: str) -> Optional[datetime]:
    """Read and parse a timestamp from a model or a dict; None when unusable."""
    if isinstance(record, dict):
        value = record.get(timestamp_field)
        if value is None:
            # raw backend dicts use camelCase
            head, *rest = timestamp_field.split('_')
            value = record.get(head + ''.join(part.title() for part in rest))
    else:
        value = getattr(record, timestamp_field, None)
    return parse_timestamp(value)


class TimeWindowGrouper(BaseProcessor):
    """Partitions records into display time buckets."""

    def __init__(self, settings: Optional[BaseConfig] = None):
        super().__init__("TimeWindowGrouper", settings)
        self.week_window = timedelta(days=self.settings.recent_window_days)

    def bucket_for(self, timestamp: Optional[datetime], now: datetime) -> str:
        """
        Name of the bucket a timestamp falls into.

        Rules, first match wins: same calendar day as ``now`` -> today;
        within the last week -> this_week; same calendar month -> this_month;
        anything else, including missing timestamps -> older.
        """
        if timestamp is None:
            return 'older'

        local = align_to(timestamp, now)
        if local is None:
            return 'older'

        if local.date() == now.date():
            return 'today'
        if local >= now - self.week_window:
            return 'this_week'
        if (local.year, local.month) == (now.year, now.month):
            return 'this_month'
        return 'older'

    def group(
        self,
        records: Optional[Iterable[Any]],
        now: datetime,
        timestamp_field: str = 'completed_at'
    ) -> TimeBuckets:
        """
        Partition records into time buckets.

        Args:
            records: Models or dicts carrying ``timestamp_field``
            now: Reference time; its timezone defines the calendar
            timestamp_field: Attribute or key holding the record's time

        Returns:
            TimeBuckets; every record appears in exactly one bucket, in input order
        """
        self._reset_stats()
        buckets = TimeBuckets()
        unparsed = 0

        for record in records or []:
            timestamp = record_timestamp(record, timestamp_field)
            if timestamp is None:
                unparsed += 1
            getattr(buckets, self.bucket_for(timestamp, now)).append(record)
            self._stats.records_processed += 1

        self._stats.records_skipped = unparsed
        if unparsed:
            self.logger.warning("Records without usable timestamp placed in older",
                                count=unparsed, field=timestamp_field)

        self.logger.debug("Grouped records into time buckets",
                          today=len(buckets.today),
                          this_week=len(buckets.this_week),
                          this_month=len(buckets.this_month),
                          older=len(buckets.older))
        return buckets


__all__ = ['TimeWindowGrouper', 'record_timestamp']
