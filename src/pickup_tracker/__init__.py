"""
Pickup Tracker - route summary engine for school pickup tracking.

Turns GPS pings and pickup records fetched from the backend into stop
timelines, per-school pickup breakdowns, completion statistics, time-bucketed
history and CSV exports.
"""

__version__ = "1.0.0"
