"""Read-only recording entities supplied by the Time-Window Source.

Recordings, tracks and audio-bait events are owned by an external store.
These models only validate the fields the visit engine reads.  They are
immutable once parsed so they can be shared between visits and reports.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from visit_engine.domain.enums import UNIDENTIFIED, RecordingType
from visit_engine.foundation.clock import ensure_utc


# ── Tags & Tracks ────────────────────────────────────────────────────────────

class TrackTag(BaseModel):
    """A label attached to a track, by a person or by a classifier."""

    what: Optional[str] = Field(default=None, description="Animal label, e.g. 'possum'")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    automatic: bool = Field(default=True, description="False for human-assigned tags")
    user_id: Optional[int] = Field(default=None, description="Tagger, for human tags")

    model_config = {"frozen": True}

    @property
    def usable(self) -> bool:
        return bool(self.what) and self.what != UNIDENTIFIED


class Track(BaseModel):
    """A tracked object inside a recording, offsets relative to its start."""

    track_id: int
    start_s: float = Field(default=0.0, ge=0.0)
    end_s: float = Field(default=0.0, ge=0.0)
    tags: list[TrackTag] = Field(default_factory=list)

    model_config = {"frozen": True}

    def best_tag(self, requesting_user_id: int | None = None) -> TrackTag | None:
        """Pick the tag that speaks for this track.

        Human tags win over automatic ones; among human tags the requesting
        user's own tag wins.  Otherwise the first automatic tag is used.
        """
        human = [t for t in self.tags if not t.automatic]
        if human:
            for tag in human:
                if requesting_user_id is not None and tag.user_id == requesting_user_id:
                    return tag
            return human[0]
        for tag in self.tags:
            if tag.automatic:
                return tag
        return None


# ── Recording ────────────────────────────────────────────────────────────────

class Recording(BaseModel):
    """One sensor-triggered capture."""

    recording_id: int
    device_id: int
    device_name: str = ""
    group_name: str = ""
    station_id: Optional[int] = None
    recording_type: RecordingType = RecordingType.THERMAL_RAW
    recording_date_time: datetime
    duration: float = Field(default=0.0, ge=0.0, description="Seconds")
    tracks: list[Track] = Field(default_factory=list)

    model_config = {"frozen": True}

    @field_validator("recording_date_time")
    @classmethod
    def timestamp_must_be_aware(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def end_time(self) -> datetime:
        return self.recording_date_time + timedelta(seconds=self.duration)


# ── Audio bait ───────────────────────────────────────────────────────────────

class AudioBaitEvent(BaseModel):
    """A logged playback of a lure sound at a device."""

    event_id: int
    device_id: int
    date_time: datetime
    file_id: int
    volume: Optional[int] = None
    file_name: str = Field(default="", description="Resolved by bulk file lookup")

    model_config = {"frozen": True}

    @field_validator("date_time")
    @classmethod
    def timestamp_must_be_aware(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class AudioFile(BaseModel):
    """File details returned by the bulk file lookup."""

    file_id: int
    name: str = ""

    model_config = {"frozen": True}
