"""Pydantic models for data loaded into the in-memory source over HTTP."""

from __future__ import annotations

from pydantic import BaseModel, Field

from visit_engine.domain.recording import AudioBaitEvent, AudioFile, Recording


class DatasetUpload(BaseModel):
    """A batch of recordings, audio-bait events and audio files."""

    recordings: list[Recording] = Field(default_factory=list)
    audio_events: list[AudioBaitEvent] = Field(default_factory=list)
    files: list[AudioFile] = Field(default_factory=list)
    replace: bool = Field(default=False, description="Clear the source before loading")


class DatasetAck(BaseModel):
    recordings: int
    audio_events: int
    files: int
    total_recordings: int
