"""Abstract Time-Window Source.

A RecordingSource is the external store the visit engine reads from.  The
engine treats it as a black box with three calls: a paged recording fetch,
an audio-bait event fetch by time range, and a bulk file lookup.

Architectural rules:
    1. fetch() must return rows ordered by device, then newest first, and
       must be deterministic for fixed parameters.
    2. fetch() must return the total count when ``want_count`` is set.
    3. Access filtering is applied by the engine, not by the source.
    4. Errors are raised as-is; the engine never swallows them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from visit_engine.domain.recording import AudioBaitEvent, AudioFile, Recording


class SourceContractError(Exception):
    """Raised when a source reply breaks the fetch contract."""


# ── Requests & Replies ───────────────────────────────────────────────────────

class RecordingFilter(BaseModel):
    """Which recordings a visit query covers."""

    device_ids: Optional[list[int]] = None
    group_names: Optional[list[str]] = None
    start: Optional[datetime] = Field(default=None, description="Inclusive lower bound")
    end: Optional[datetime] = Field(default=None, description="Exclusive upper bound")

    model_config = {"frozen": True}


class PageRequest(BaseModel):
    """One window of the recording fetch."""

    filter: RecordingFilter = Field(default_factory=RecordingFilter)
    offset: int = Field(default=0, ge=0)
    limit: int = Field(..., ge=1)
    want_count: bool = False

    model_config = {"frozen": True}


class RecordingPage(BaseModel):
    rows: list[Recording] = Field(default_factory=list)
    count: Optional[int] = Field(default=None, ge=0, description="Total matching rows, when asked")


class AudioEventQuery(BaseModel):
    start: datetime
    end: datetime
    device_ids: list[int] = Field(default_factory=list)

    model_config = {"frozen": True}


# ── Source ───────────────────────────────────────────────────────────────────

class RecordingSource(ABC):
    """Base class for stores the visit engine can scan."""

    @abstractmethod
    async def fetch(self, request: PageRequest) -> RecordingPage:
        """Return one ordered page of recordings (plus the total if asked)."""
        ...

    @abstractmethod
    async def fetch_audio_events(self, query: AudioEventQuery) -> list[AudioBaitEvent]:
        """Return audio-bait events with ``query.start <= date_time <= query.end``."""
        ...

    @abstractmethod
    async def lookup_files(self, file_ids: set[int]) -> dict[int, AudioFile]:
        """Resolve file ids in one call.  Unknown ids are simply absent."""
        ...
