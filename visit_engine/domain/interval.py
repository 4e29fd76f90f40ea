"""Visit interval policies.

An IntervalPolicy decides whether two recordings of the same device are
close enough in time to belong to one visit.  The builder depends on this
protocol; swap implementations to change stitching without touching the
builder.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Protocol

from visit_engine.domain.recording import Recording


class IntervalPolicy(Protocol):
    """Protocol for recording-to-visit stitching."""

    def is_within_visit_interval(self, newer: Recording, older: Recording) -> bool:
        """Return True if *older* may join the visit that *newer* belongs to."""
        ...


class GapIntervalPolicy:
    """Fixed maximum gap between consecutive recordings.

    The gap runs from the end of the older recording to the start of the
    newer one, so overlapping or simultaneous recordings always pass.  A
    change of station is always a boundary.
    """

    def __init__(self, interval: timedelta = timedelta(minutes=10)) -> None:
        if interval < timedelta(0):
            raise ValueError("interval must not be negative")
        self.interval = interval

    def is_within_visit_interval(self, newer: Recording, older: Recording) -> bool:
        if newer.device_id != older.device_id or newer.station_id != older.station_id:
            return False
        gap = newer.recording_date_time - older.end_time
        return gap <= self.interval

    def __repr__(self) -> str:
        return f"GapIntervalPolicy(interval={self.interval})"
