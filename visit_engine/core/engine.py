"""Visit Aggregation Engine — the windowed fetch loop.

Each invocation scans the source in growing windows until it has enough
complete visits or the source runs dry:

    fetch page → feed DeviceSummary → re-check completeness
               ├── exhausted or enough visits → finalise
               └── otherwise → ask for min(remaining * 2, query_max) more

Finalising completes every visit if the source was exhausted, otherwise it
discards visits that could still grow.  Audio bait is then matched and file
names resolved once for the whole invocation.

No state survives between invocations: every call builds its own
DeviceSummary.  Source failures propagate unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Callable

from pydantic import BaseModel, Field

from visit_engine.adapters.base import (
    PageRequest,
    RecordingFilter,
    RecordingSource,
    SourceContractError,
)
from visit_engine.core.audio_bait import AudioBaitMatcher
from visit_engine.domain.interval import GapIntervalPolicy, IntervalPolicy
from visit_engine.domain.recording import Recording
from visit_engine.domain.visit import Visit
from visit_engine.store.device_summary import DeviceSummary

logger = logging.getLogger(__name__)

RecordingFilterHook = Callable[[Recording], Recording]


class VisitQuery(BaseModel):
    """Parameters of one visit query."""

    filter: RecordingFilter = Field(default_factory=RecordingFilter)
    limit: int | None = Field(default=None, ge=1, description="Complete visits wanted")
    offset: int = Field(default=0, ge=0, description="Fetch position to start from")

    model_config = {"frozen": True}


class VisitQueryResult:
    """Outcome of one invocation."""

    __slots__ = (
        "visits",
        "summary",
        "has_more_visits",
        "query_offset",
        "total_recordings",
        "num_recordings",
    )

    def __init__(
        self,
        visits: list[Visit],
        summary: DeviceSummary,
        has_more_visits: bool,
        query_offset: int | None,
        total_recordings: int,
        num_recordings: int,
    ) -> None:
        self.visits = visits
        self.summary = summary
        self.has_more_visits = has_more_visits
        self.query_offset = query_offset
        self.total_recordings = total_recordings
        self.num_recordings = num_recordings

    @property
    def num_visits(self) -> int:
        return len(self.visits)

    def to_dict(self) -> dict:
        return {
            "visits": [v.summary() for v in self.visits],
            "devices": [d.to_dict() for d in self.summary.device_map.values()],
            "has_more_visits": self.has_more_visits,
            "query_offset": self.query_offset,
            "total_recordings": self.total_recordings,
            "num_recordings": self.num_recordings,
            "num_visits": self.num_visits,
        }


class VisitAggregationEngine:
    """Reconstructs complete visits from a paged recording source.

    Args:
        source: The Time-Window Source.
        interval_policy: Decides which recordings share a visit.
        audio_bait_window: Lookback/look-ahead for audio-bait matching.
        max_visit_query_results: Default visit target; pages are capped at
            twice this many recordings.
        recording_filter: Access filter applied to each recording before it
            reaches the builders.
    """

    def __init__(
        self,
        source: RecordingSource,
        interval_policy: IntervalPolicy | None = None,
        audio_bait_window: timedelta = timedelta(days=1),
        max_visit_query_results: int = 5000,
        recording_filter: RecordingFilterHook | None = None,
    ) -> None:
        if max_visit_query_results < 1:
            raise ValueError("max_visit_query_results must be positive")
        self._source = source
        self._interval_policy = interval_policy or GapIntervalPolicy()
        self._matcher = AudioBaitMatcher(source, audio_bait_window)
        self._max_results = max_visit_query_results
        self._recording_filter = recording_filter

    async def query_visits(
        self,
        query: VisitQuery,
        *,
        requesting_user_id: int | None = None,
        cancel: asyncio.Event | None = None,
    ) -> VisitQueryResult:
        """Run the windowed fetch loop for *query*.

        Cancellation is honoured between fetch iterations: the result then
        holds the visits completed so far and a resumption offset.
        """
        request_visits = query.limit if query.limit is not None else self._max_results
        query_max = self._max_results * 2
        limit = min(request_visits * 2, query_max) if query.limit is not None else query_max

        summary = DeviceSummary(self._interval_policy, first_visit_id=query.offset + 1)
        offset = query.offset
        total_count: int | None = None
        num_recordings = 0
        remaining = request_visits
        got_all = False

        while remaining > 0:
            if cancel is not None and cancel.is_set():
                logger.info("Visit query cancelled at offset %d", offset)
                break

            page = await self._source.fetch(
                PageRequest(
                    filter=query.filter,
                    offset=offset,
                    limit=limit,
                    want_count=total_count is None,
                )
            )
            if total_count is None:
                if page.count is None:
                    raise SourceContractError("source did not return a total count")
                total_count = page.count

            if not page.rows:
                if offset < total_count:
                    logger.warning(
                        "Source returned no rows at offset %d of %d; treating as end of data",
                        offset, total_count,
                    )
                got_all = True
                break

            num_recordings += len(page.rows)
            got_all = offset + len(page.rows) >= total_count
            rows = page.rows
            if self._recording_filter is not None:
                rows = [self._recording_filter(r) for r in rows]

            summary.generate_visits(rows, offset, got_all, requesting_user_id)
            if not got_all:
                summary.check_for_complete_visits()

            offset += len(page.rows)
            remaining = request_visits - summary.complete_visits_count()
            logger.debug(
                "Fetched %d row(s), offset now %d, %d complete visit(s), %d remaining",
                len(page.rows), offset, summary.complete_visits_count(), remaining,
            )
            if got_all:
                break
            limit = max(1, min(remaining * 2, query_max))

        if got_all:
            summary.mark_completed()
        else:
            summary.remove_incomplete_visits()

        visits = summary.complete_visits()
        # Stable sort keeps fetch order for equal starts.
        visits.sort(key=lambda v: v.start, reverse=True)

        query_offset = summary.earliest_incomplete_offset()
        if query_offset is None:
            if visits:
                query_offset = max(v.query_offset for v in visits) + 1
            elif not got_all:
                # Stopped before anything was consumed.
                query_offset = offset

        file_ids = await self._matcher.match(visits)
        await self._matcher.resolve_file_names(visits, file_ids)

        logger.info(
            "Visit query: %d visit(s) from %d recording(s), more=%s, next offset=%s",
            len(visits), num_recordings, not got_all, query_offset,
        )
        return VisitQueryResult(
            visits=visits,
            summary=summary,
            has_more_visits=not got_all,
            query_offset=query_offset,
            total_recordings=total_count or 0,
            num_recordings=num_recordings,
        )
