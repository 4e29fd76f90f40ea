"""In-memory RecordingSource.

Holds recordings, audio-bait events and file details in plain lists and
serves them with the ordering the engine relies on.  Used by the HTTP
service and by tests; a database-backed source implements the same
interface.
"""

from __future__ import annotations

import logging
from typing import Iterable

from visit_engine.adapters.base import (
    AudioEventQuery,
    PageRequest,
    RecordingFilter,
    RecordingPage,
    RecordingSource,
)
from visit_engine.domain.recording import AudioBaitEvent, AudioFile, Recording
from visit_engine.foundation.clock import ensure_utc

logger = logging.getLogger(__name__)


def fetch_order_key(recording: Recording) -> tuple:
    """Device first, then newest first, then highest id first."""
    return (
        recording.device_id,
        -recording.recording_date_time.timestamp(),
        -recording.recording_id,
    )


class InMemoryRecordingSource(RecordingSource):
    """A RecordingSource over in-process collections."""

    def __init__(
        self,
        recordings: Iterable[Recording] = (),
        audio_events: Iterable[AudioBaitEvent] = (),
        files: Iterable[AudioFile] = (),
    ) -> None:
        self._recordings: list[Recording] = []
        self._audio_events: list[AudioBaitEvent] = []
        self._files: dict[int, AudioFile] = {}
        self.load(recordings, audio_events, files)

    def load(
        self,
        recordings: Iterable[Recording] = (),
        audio_events: Iterable[AudioBaitEvent] = (),
        files: Iterable[AudioFile] = (),
    ) -> None:
        """Add data to the source, keeping fetch order sorted."""
        self._recordings.extend(recordings)
        self._recordings.sort(key=fetch_order_key)
        self._audio_events.extend(audio_events)
        self._audio_events.sort(key=lambda e: (e.date_time, e.event_id))
        for f in files:
            self._files[f.file_id] = f
        logger.info(
            "Source holds %d recording(s), %d audio event(s), %d file(s)",
            len(self._recordings),
            len(self._audio_events),
            len(self._files),
        )

    def clear(self) -> None:
        self._recordings.clear()
        self._audio_events.clear()
        self._files.clear()

    @property
    def recording_count(self) -> int:
        return len(self._recordings)

    # ── RecordingSource ──────────────────────────────────────────────────

    async def fetch(self, request: PageRequest) -> RecordingPage:
        matching = [r for r in self._recordings if _matches(request.filter, r)]
        rows = matching[request.offset:request.offset + request.limit]
        return RecordingPage(
            rows=rows,
            count=len(matching) if request.want_count else None,
        )

    async def fetch_audio_events(self, query: AudioEventQuery) -> list[AudioBaitEvent]:
        devices = set(query.device_ids)
        start, end = ensure_utc(query.start), ensure_utc(query.end)
        return [
            e for e in self._audio_events
            if start <= e.date_time <= end and (not devices or e.device_id in devices)
        ]

    async def lookup_files(self, file_ids: set[int]) -> dict[int, AudioFile]:
        return {fid: self._files[fid] for fid in file_ids if fid in self._files}


def _matches(flt: RecordingFilter, recording: Recording) -> bool:
    if flt.device_ids is not None and recording.device_id not in flt.device_ids:
        return False
    if flt.group_names is not None and recording.group_name not in flt.group_names:
        return False
    if flt.start is not None and recording.recording_date_time < ensure_utc(flt.start):
        return False
    if flt.end is not None and recording.recording_date_time >= ensure_utc(flt.end):
        return False
    return True
