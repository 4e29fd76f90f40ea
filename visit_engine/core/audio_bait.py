"""Audio Bait Matcher — assigns lure playback events to visits.

One fetch covers every visit of an invocation: the window runs from the
earliest visit start minus the lookback to the latest visit end plus the
lookback.  Each event is then matched per device:

    - inside the visit span ``[start, end]``, or
    - the nearest bait played before ``start`` within the lookback window
      (a lure often plays just before the animal arrives).

Several events at the nearest preceding instant are all kept.  File names
are resolved with a single bulk lookup over the distinct file ids.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import timedelta

from visit_engine.adapters.base import AudioEventQuery, RecordingSource
from visit_engine.domain.recording import AudioBaitEvent
from visit_engine.domain.visit import Visit

logger = logging.getLogger(__name__)


class AudioBaitMatcher:
    """Matches audio-bait events to visits.

    Args:
        source: Supplies audio events and file details.
        window: Lookback before a visit (and look-ahead after it) used for
            both the fetch range and the preceding-bait rule.
    """

    def __init__(self, source: RecordingSource, window: timedelta = timedelta(days=1)) -> None:
        self._source = source
        self._window = window

    async def match(self, visits: list[Visit]) -> set[int]:
        """Annotate *visits* in place.  Returns the audio file ids referenced."""
        if not visits:
            return set()

        query = AudioEventQuery(
            start=min(v.start for v in visits) - self._window,
            end=max(v.end for v in visits) + self._window,
            device_ids=sorted({v.device_id for v in visits}),
        )
        events = await self._source.fetch_audio_events(query)
        logger.debug(
            "Fetched %d audio event(s) between %s and %s",
            len(events), query.start.isoformat(), query.end.isoformat(),
        )

        by_device: dict[int, list[AudioBaitEvent]] = defaultdict(list)
        for event in events:
            by_device[event.device_id].append(event)

        file_ids: set[int] = set()
        for visit in visits:
            matched = self.events_for_visit(visit, by_device.get(visit.device_id, []))
            visit.attach_audio_bait(matched)
            file_ids.update(e.file_id for e in matched)
        return file_ids

    def events_for_visit(self, visit: Visit, events: list[AudioBaitEvent]) -> list[AudioBaitEvent]:
        """Events of *visit*'s device that relate to it."""
        contained = [e for e in events if visit.start <= e.date_time <= visit.end]

        lookback_start = visit.start - self._window
        preceding = [e for e in events if lookback_start <= e.date_time < visit.start]
        if preceding:
            nearest = max(e.date_time for e in preceding)
            contained.extend(e for e in preceding if e.date_time == nearest)
        return contained

    async def resolve_file_names(self, visits: list[Visit], file_ids: set[int]) -> None:
        """Fill in ``file_name`` on every matched event with one bulk lookup.

        Ids the lookup cannot resolve keep a blank name.
        """
        if not file_ids:
            return
        files = await self._source.lookup_files(set(file_ids))
        missing = file_ids - files.keys()
        if missing:
            logger.warning("No file details for audio file id(s): %s", sorted(missing))

        for visit in visits:
            visit.attach_audio_bait([
                e.model_copy(update={"file_name": files[e.file_id].name if e.file_id in files else ""})
                for e in visit.audio_bait_events
            ])
