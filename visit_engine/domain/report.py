"""Report rows — the structured form of the visits report.

Rows are a tagged variant: each kind carries named fields and a
``row_type`` discriminator.  They hold datetimes, not strings, and are
flattened to columns only by the ReportFormatter.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from visit_engine.domain.enums import RowType


# ── Visit table ──────────────────────────────────────────────────────────────

class VisitRow(BaseModel):
    row_type: Literal[RowType.VISIT] = RowType.VISIT
    visit_id: int
    group_name: str
    device_name: str
    assumed_tag: str
    what: str
    start: datetime
    end: datetime
    event_count: int
    audio_bait_visit: bool

    model_config = {"frozen": True}


class EventRow(BaseModel):
    row_type: Literal[RowType.EVENT] = RowType.EVENT
    visit_id: int
    assumed_tag: str
    what: str
    recording_id: int
    track_id: Optional[int] = None
    start: datetime
    end: datetime
    confidence: int

    model_config = {"frozen": True}


class AudioBaitRow(BaseModel):
    row_type: Literal[RowType.AUDIO_BAIT] = RowType.AUDIO_BAIT
    visit_id: int
    file_name: str
    volume: Optional[int] = None
    played_at: datetime

    model_config = {"frozen": True}

    @property
    def audio_played(self) -> str:
        if self.volume:
            return f"{self.file_name} vol {self.volume}"
        return self.file_name


ReportRow = Union[VisitRow, EventRow, AudioBaitRow]


# ── Device summary table ─────────────────────────────────────────────────────

class DeviceSummaryRow(BaseModel):
    """One device, or one animal at a device when ``animal`` is set."""

    device_id: int
    device_name: str
    group_name: str
    first_visit: datetime
    last_visit: datetime
    visit_count: int
    avg_events_per_visit: float
    animals: list[str] = Field(default_factory=list)
    animal_visit_counts: list[int] = Field(default_factory=list)
    audio_bait: bool
    animal: Optional[str] = None

    model_config = {"frozen": True}


class VisitReport(BaseModel):
    device_rows: list[DeviceSummaryRow] = Field(default_factory=list)
    rows: list[ReportRow] = Field(default_factory=list)
