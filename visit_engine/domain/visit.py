"""Visit — one presumed-continuous animal presence at a device.

A Visit stitches together temporally-close recordings of one device.  It is
grown by the VisitBuilder while recordings arrive newest-first, so each new
recording pulls ``start`` earlier and appends events to the end of the
``events`` list.

Lifecycle:  incomplete → complete
    - incomplete: a deeper page might still reveal an older recording that
                  belongs to this visit
    - complete:   no further recording can extend it; the recording-derived
                  fields are frozen from here on
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from visit_engine.domain.enums import UNIDENTIFIED
from visit_engine.domain.recording import AudioBaitEvent, Recording


class VisitClosedError(Exception):
    """Raised when something tries to extend a complete visit."""

    def __init__(self, visit_id: int) -> None:
        self.visit_id = visit_id
        super().__init__(f"Visit {visit_id} is complete and cannot be extended")


# ── Visit Event ──────────────────────────────────────────────────────────────

class VisitEvent(BaseModel):
    """One track (or track-less recording) inside a visit."""

    recording_id: int
    track_id: int | None = None
    recording_date_time: datetime
    start: datetime
    end: datetime
    what: str = Field(default="", description="Label of the tag chosen for this track")
    human_tagged: bool = False
    confidence: int = Field(default=0, ge=0, le=100, description="Percent")
    assumed_tag: str = ""

    model_config = {"frozen": True}

    @property
    def usable(self) -> bool:
        return bool(self.what) and self.what != UNIDENTIFIED


def events_for_recording(
    recording: Recording,
    requesting_user_id: int | None = None,
) -> list[VisitEvent]:
    """Build the visit events for one recording, newest track first.

    A recording without tracks still yields one event covering its whole
    duration so that it counts towards the visit.
    """
    base = recording.recording_date_time
    if not recording.tracks:
        return [
            VisitEvent(
                recording_id=recording.recording_id,
                recording_date_time=base,
                start=base,
                end=recording.end_time,
            )
        ]

    events = []
    for track in recording.tracks:
        tag = track.best_tag(requesting_user_id)
        events.append(
            VisitEvent(
                recording_id=recording.recording_id,
                track_id=track.track_id,
                recording_date_time=base,
                start=base + timedelta(seconds=track.start_s),
                end=base + timedelta(seconds=max(track.start_s, track.end_s)),
                what=(tag.what or "") if tag else "",
                human_tagged=bool(tag and not tag.automatic),
                confidence=round(tag.confidence * 100) if tag else 0,
            )
        )
    events.sort(key=lambda e: e.start, reverse=True)
    return events


def assume_tag(events: list[VisitEvent]) -> str:
    """Majority label of *events*, human tags first, ties to the most recent.

    *events* must be ordered newest first.
    """
    pool = [e.what for e in events if e.usable and e.human_tagged]
    if not pool:
        pool = [e.what for e in events if e.usable]
    if not pool:
        return UNIDENTIFIED

    counts = Counter(pool)
    best = max(counts.values())
    for label in pool:
        if counts[label] == best:
            return label
    return UNIDENTIFIED


# ── Visit ────────────────────────────────────────────────────────────────────

class Visit:
    """A mutable visit under construction, immutable once complete.

    Thread-safety note:
        Visits are mutated only by the single task driving one engine
        invocation.  They are not themselves locked.
    """

    __slots__ = (
        "visit_id",
        "device_id",
        "device_name",
        "group_name",
        "station_id",
        "start",
        "end",
        "events",
        "audio_bait_events",
        "assumed_tag",
        "what",
        "first_offset",
        "query_offset",
        "complete",
        "_oldest",
    )

    def __init__(
        self,
        visit_id: int,
        recording: Recording,
        position: int,
        requesting_user_id: int | None = None,
    ) -> None:
        self.visit_id = visit_id
        self.device_id = recording.device_id
        self.device_name = recording.device_name
        self.group_name = recording.group_name
        self.station_id = recording.station_id
        self.start: datetime = recording.recording_date_time
        # Timestamp of the newest recording; durations do not stretch the span.
        self.end: datetime = recording.recording_date_time
        self.events: list[VisitEvent] = events_for_recording(recording, requesting_user_id)
        self.audio_bait_events: list[AudioBaitEvent] = []
        self.assumed_tag: str = ""
        self.what: str = ""
        # Absolute fetch positions of the newest and oldest consumed recordings.
        self.first_offset: int = position
        self.query_offset: int = position
        self.complete: bool = False
        self._oldest: Recording = recording

    # ── Mutation ─────────────────────────────────────────────────────────

    def add_recording(
        self,
        recording: Recording,
        position: int,
        requesting_user_id: int | None = None,
    ) -> None:
        """Extend this visit backwards in time with an older recording."""
        if self.complete:
            raise VisitClosedError(self.visit_id)
        self.events.extend(events_for_recording(recording, requesting_user_id))
        self.start = min(self.start, recording.recording_date_time)
        self.end = max(self.end, recording.recording_date_time)
        self.query_offset = position
        self._oldest = recording

    def mark_complete(self) -> None:
        """Freeze the visit and settle its tags.  Idempotent."""
        if self.complete:
            return
        self.assumed_tag = assume_tag(self.events)
        self.what = self.events[0].what if self.events else ""
        self.events = [
            e.model_copy(update={"assumed_tag": e.what if e.usable else self.assumed_tag})
            for e in self.events
        ]
        self.complete = True

    def attach_audio_bait(self, events: list[AudioBaitEvent]) -> None:
        """Annotate with matched audio-bait events, newest first.

        Audio bait is matched after the visit is complete, so this is the one
        mutation allowed on a complete visit.
        """
        self.audio_bait_events = sorted(events, key=lambda e: e.date_time, reverse=True)

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def oldest_recording(self) -> Recording:
        return self._oldest

    @property
    def event_count(self) -> int:
        return len(self.events)

    @property
    def audio_bait_visit(self) -> bool:
        """True if any matched bait played within the visit's span."""
        return any(self.start <= e.date_time <= self.end for e in self.audio_bait_events)

    def summary(self) -> dict:
        """Serialisable view of the visit for API responses."""
        return {
            "visit_id": self.visit_id,
            "device_id": self.device_id,
            "device_name": self.device_name,
            "group_name": self.group_name,
            "station_id": self.station_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "assumed_tag": self.assumed_tag,
            "what": self.what,
            "complete": self.complete,
            "query_offset": self.query_offset,
            "audio_bait_visit": self.audio_bait_visit,
            "events": [e.model_dump(mode="json") for e in self.events],
            "audio_bait_events": [e.model_dump(mode="json") for e in self.audio_bait_events],
        }

    # ── Dunder ───────────────────────────────────────────────────────────

    def __repr__(self) -> str:
        return (
            f"Visit(id={self.visit_id}, device={self.device_id}, "
            f"start={self.start.isoformat()}, end={self.end.isoformat()}, "
            f"events={self.event_count}, complete={self.complete})"
        )
