"""Per-invocation visit accumulation with completeness tracking.

Design notes:
    - One DeviceSummary is built per engine invocation and never shared.
    - Recordings must arrive ordered by device, then newest first.  Under
      that ordering a visit is complete once an older recording of the same
      device has been seen outside it, once a recording of another device
      follows, or once the source is exhausted.
    - Only complete visits count towards device statistics.  Incomplete
      visits are either completed later or discarded, and a discarded
      visit's first fetch position becomes the resumption offset.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from visit_engine.domain.interval import GapIntervalPolicy, IntervalPolicy
from visit_engine.domain.recording import Recording
from visit_engine.domain.visit import Visit
from visit_engine.store.visit_builder import VisitBuilder

logger = logging.getLogger(__name__)


class VisitSummary:
    """Per-animal visit statistics for one device."""

    __slots__ = (
        "tag",
        "device_name",
        "group_name",
        "visit_count",
        "event_count",
        "start",
        "end",
    )

    def __init__(self, tag: str, visit: Visit) -> None:
        self.tag = tag
        self.device_name = visit.device_name
        self.group_name = visit.group_name
        self.visit_count = 0
        self.event_count = 0
        self.start: datetime = visit.start
        self.end: datetime = visit.end

    def add(self, visit: Visit) -> None:
        self.visit_count += 1
        self.event_count += visit.event_count
        self.start = min(self.start, visit.start)
        self.end = max(self.end, visit.end)

    def to_dict(self) -> dict:
        return {
            "tag": self.tag,
            "visit_count": self.visit_count,
            "event_count": self.event_count,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


class DeviceVisits:
    """Visits for one device, most recent first, plus running statistics."""

    __slots__ = (
        "device_id",
        "device_name",
        "group_name",
        "visits",
        "visit_count",
        "event_count",
        "start_time",
        "end_time",
        "_builder",
        "_animals",
    )

    def __init__(self, builder: VisitBuilder, recording: Recording) -> None:
        self.device_id = recording.device_id
        self.device_name = recording.device_name
        self.group_name = recording.group_name
        self.visits: list[Visit] = []
        self.visit_count = 0
        self.event_count = 0
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self._builder = builder
        self._animals: dict[str, VisitSummary] = {}

    # ── Mutation ─────────────────────────────────────────────────────────

    def add_recording(
        self,
        recording: Recording,
        position: int,
        requesting_user_id: int | None = None,
    ) -> Visit:
        visit, opened = self._builder.consume(recording, position, requesting_user_id)
        if opened:
            self.visits.append(visit)
        return visit

    def close_feed(self) -> None:
        self._builder.close_feed()

    def check_for_complete_visits(self) -> int:
        """Complete every visit that can no longer grow.  Returns how many."""
        open_visit = self._builder.current
        completed = 0
        for visit in self.visits:
            if visit.complete:
                continue
            if visit is not open_visit or self._builder.exhausted:
                self._complete(visit)
                completed += 1
        return completed

    def mark_completed(self) -> None:
        """Complete everything; the source has nothing more to offer."""
        self._builder.close_feed()
        self.check_for_complete_visits()

    def remove_incomplete_visits(self) -> list[int]:
        """Drop visits that could still grow.  Returns their first positions."""
        removed = [v.first_offset for v in self.visits if not v.complete]
        self.visits = [v for v in self.visits if v.complete]
        return removed

    def _complete(self, visit: Visit) -> None:
        visit.mark_complete()
        self.visit_count += 1
        self.event_count += visit.event_count
        self.start_time = visit.start if self.start_time is None else min(self.start_time, visit.start)
        self.end_time = visit.end if self.end_time is None else max(self.end_time, visit.end)

        summary = self._animals.get(visit.assumed_tag)
        if summary is None:
            summary = VisitSummary(visit.assumed_tag, visit)
            self._animals[visit.assumed_tag] = summary
        summary.add(visit)

    # ── Queries ──────────────────────────────────────────────────────────

    def incomplete_visits(self) -> list[Visit]:
        return [v for v in self.visits if not v.complete]

    def complete_visits(self) -> list[Visit]:
        return [v for v in self.visits if v.complete]

    @property
    def audio_bait(self) -> bool:
        """True if audio bait played during any complete visit."""
        return any(v.audio_bait_visit for v in self.visits if v.complete)

    def animal_summary(self) -> dict[str, VisitSummary]:
        return dict(self._animals)

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "device_name": self.device_name,
            "group_name": self.group_name,
            "visit_count": self.visit_count,
            "event_count": self.event_count,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "audio_bait": self.audio_bait,
            "animals": [s.to_dict() for s in self._animals.values()],
        }


class DeviceSummary:
    """Owns one builder per device and decides which visits are final.

    Args:
        policy: Interval policy shared by every device's builder.
        first_visit_id: Id given to the first visit opened.  Callers that
            resume a scan pass their starting offset + 1 so ids stay unique
            across pages.
    """

    __slots__ = ("device_map", "_policy", "_visit_ids", "_last_device_id", "_discarded_offsets")

    def __init__(self, policy: IntervalPolicy | None = None, first_visit_id: int = 1) -> None:
        self.device_map: dict[int, DeviceVisits] = {}
        self._policy = policy or GapIntervalPolicy()
        self._visit_ids = first_visit_id - 1
        self._last_device_id: int | None = None
        self._discarded_offsets: list[int] = []

    # ── Feeding ──────────────────────────────────────────────────────────

    def generate_visits(
        self,
        recordings: Iterable[Recording],
        offset: int,
        got_all_recordings: bool,
        requesting_user_id: int | None = None,
    ) -> None:
        """Feed one page of recordings that starts at fetch position *offset*."""
        for index, recording in enumerate(recordings):
            device_id = recording.device_id
            if self._last_device_id is not None and device_id != self._last_device_id:
                self.device_map[self._last_device_id].close_feed()
            self._last_device_id = device_id

            devices = self.device_map.get(device_id)
            if devices is None:
                builder = VisitBuilder(device_id, self._policy, self._next_visit_id)
                devices = DeviceVisits(builder, recording)
                self.device_map[device_id] = devices
            devices.add_recording(recording, offset + index, requesting_user_id)

        if got_all_recordings:
            self.mark_completed()

    def check_for_complete_visits(self) -> int:
        """Re-evaluate completeness without assuming the scan is finished."""
        completed = sum(d.check_for_complete_visits() for d in self.device_map.values())
        if completed:
            logger.debug("Completed %d visit(s)", completed)
        return completed

    def mark_completed(self) -> None:
        for devices in self.device_map.values():
            devices.mark_completed()

    def remove_incomplete_visits(self) -> None:
        """Discard every visit not yet provably complete."""
        for device_id in list(self.device_map):
            devices = self.device_map[device_id]
            removed = devices.remove_incomplete_visits()
            if removed:
                logger.debug("Device %s: discarded %d incomplete visit(s)", device_id, len(removed))
                self._discarded_offsets.extend(removed)
            if not devices.visits:
                del self.device_map[device_id]

    # ── Queries ──────────────────────────────────────────────────────────

    def complete_visits_count(self) -> int:
        return sum(d.visit_count for d in self.device_map.values())

    def complete_visits(self) -> list[Visit]:
        visits: list[Visit] = []
        for devices in self.device_map.values():
            visits.extend(devices.complete_visits())
        return visits

    def earliest_incomplete_offset(self) -> int | None:
        """Fetch position to resume from, or None if nothing is pending.

        Covers visits still open and visits already discarded.
        """
        offsets = list(self._discarded_offsets)
        for devices in self.device_map.values():
            offsets.extend(v.first_offset for v in devices.incomplete_visits())
        return min(offsets) if offsets else None

    def _next_visit_id(self) -> int:
        self._visit_ids += 1
        return self._visit_ids
