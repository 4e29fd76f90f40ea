"""Tests for the VisitAggregationEngine windowed fetch loop."""

import asyncio
from datetime import timedelta

import pytest

from visit_engine.adapters.base import (
    AudioEventQuery,
    PageRequest,
    RecordingFilter,
    RecordingPage,
    SourceContractError,
)
from visit_engine.adapters.memory import InMemoryRecordingSource
from visit_engine.core.engine import VisitAggregationEngine, VisitQuery
from visit_engine.domain.interval import GapIntervalPolicy
from visit_engine.domain.recording import AudioBaitEvent, AudioFile, Recording

from tests.test_recording import _bait, _recording


class CountingSource(InMemoryRecordingSource):
    """In-memory source that remembers every page request."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.requests: list[PageRequest] = []
        self.lookups: list[set[int]] = []

    async def fetch(self, request: PageRequest) -> RecordingPage:
        self.requests.append(request)
        return await super().fetch(request)

    async def lookup_files(self, file_ids: set[int]) -> dict[int, AudioFile]:
        self.lookups.append(set(file_ids))
        return await super().lookup_files(file_ids)


class InflatedCountSource(InMemoryRecordingSource):
    """Claims more rows than it can deliver."""

    async def fetch(self, request: PageRequest) -> RecordingPage:
        page = await super().fetch(request)
        if request.want_count:
            page.count = 100
        return page


class CountlessSource(InMemoryRecordingSource):
    async def fetch(self, request: PageRequest) -> RecordingPage:
        page = await super().fetch(request)
        page.count = None
        return page


class BrokenSource(InMemoryRecordingSource):
    async def fetch(self, request: PageRequest) -> RecordingPage:
        raise RuntimeError("database unavailable")


class BrokenAudioSource(InMemoryRecordingSource):
    async def fetch_audio_events(self, query: AudioEventQuery) -> list[AudioBaitEvent]:
        raise RuntimeError("event store unavailable")


class CancellingSource(CountingSource):
    """Sets the cancel flag while serving the first page."""

    def __init__(self, cancel: asyncio.Event, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.cancel = cancel

    async def fetch(self, request: PageRequest) -> RecordingPage:
        self.cancel.set()
        return await super().fetch(request)


def _single_visit_devices() -> list[Recording]:
    """Three devices, one visit each, 50 recordings in total."""
    recordings = []
    next_id = 1
    for device_id, n in ((1, 17), (2, 17), (3, 16)):
        for i in range(n):
            recordings.append(_recording(next_id, 100 - i, device_id=device_id))
            next_id += 1
    return recordings


def _spaced_visits(device_id: int, visits: int, per_visit: int, first_id: int = 1) -> list[Recording]:
    """*visits* visits an hour apart, each *per_visit* recordings a minute apart."""
    recordings = []
    for v in range(visits):
        for i in range(per_visit):
            recordings.append(
                _recording(first_id + len(recordings), 1000 - 60 * v - i, device_id=device_id)
            )
    return recordings


def _engine(source, **kw) -> VisitAggregationEngine:
    kw.setdefault("interval_policy", GapIntervalPolicy(timedelta(minutes=10)))
    return VisitAggregationEngine(source, **kw)


def _key(visit) -> tuple:
    return (visit.device_id, visit.start, visit.end, tuple(e.recording_id for e in visit.events))


class TestFullScan:
    @pytest.mark.asyncio
    async def test_unpaginated_run_completes_every_visit(self) -> None:
        source = CountingSource(_single_visit_devices())
        result = await _engine(source).query_visits(VisitQuery())

        assert result.num_visits == 3
        assert not result.has_more_visits
        assert result.total_recordings == 50
        assert result.num_recordings == 50
        assert all(v.complete for v in result.visits)
        assert len(source.requests) == 1
        assert source.requests[0].limit == 10000
        assert source.requests[0].want_count

    @pytest.mark.asyncio
    async def test_visits_sorted_newest_first(self) -> None:
        recordings = _spaced_visits(1, 2, 2) + [_recording(100, 2000, device_id=2)]
        result = await _engine(InMemoryRecordingSource(recordings)).query_visits(VisitQuery())
        starts = [v.start for v in result.visits]
        assert starts == sorted(starts, reverse=True)
        assert result.visits[0].device_id == 2

    @pytest.mark.asyncio
    async def test_empty_source(self) -> None:
        result = await _engine(InMemoryRecordingSource()).query_visits(VisitQuery())
        assert result.visits == []
        assert not result.has_more_visits
        assert result.query_offset is None
        assert result.total_recordings == 0

    @pytest.mark.asyncio
    async def test_filter_passed_to_source(self) -> None:
        source = CountingSource(_single_visit_devices())
        query = VisitQuery(filter=RecordingFilter(device_ids=[2]))
        result = await _engine(source).query_visits(query)
        assert [v.device_id for v in result.visits] == [2]
        assert source.requests[0].filter.device_ids == [2]

    @pytest.mark.asyncio
    async def test_recording_filter_applied_before_visits(self) -> None:
        seen: list[int] = []

        def _filter(recording: Recording) -> Recording:
            seen.append(recording.recording_id)
            return recording.model_copy(update={"device_name": "hidden"})

        source = InMemoryRecordingSource(_spaced_visits(1, 1, 3))
        result = await _engine(source, recording_filter=_filter).query_visits(VisitQuery())
        assert seen == [1, 2, 3]
        assert result.visits[0].device_name == "hidden"


class TestWindowedFetch:
    @pytest.mark.asyncio
    async def test_stops_once_enough_visits_complete(self) -> None:
        source = CountingSource(_single_visit_devices())
        result = await _engine(source).query_visits(VisitQuery(limit=1))

        assert result.num_visits == 1
        assert result.visits[0].device_id == 1
        assert result.visits[0].event_count == 17
        assert result.has_more_visits
        assert result.num_recordings == 18
        assert result.query_offset == 17
        assert all(r.limit == 2 for r in source.requests)
        assert [r.want_count for r in source.requests].count(True) == 1

    @pytest.mark.asyncio
    async def test_page_size_tracks_remaining_demand(self) -> None:
        source = CountingSource(_spaced_visits(1, 6, 3))
        await _engine(source).query_visits(VisitQuery(limit=4))
        limits = [r.limit for r in source.requests]
        assert limits[0] == 8
        # After the first page two visits are complete, so two remain.
        assert limits[1] == 4

    @pytest.mark.asyncio
    async def test_page_size_capped_at_twice_the_default(self) -> None:
        source = CountingSource(_spaced_visits(1, 6, 3))
        await _engine(source, max_visit_query_results=2).query_visits(VisitQuery(limit=50))
        assert all(r.limit <= 4 for r in source.requests)

    @pytest.mark.asyncio
    async def test_empty_page_before_count_is_end_of_data(self) -> None:
        source = InflatedCountSource(_spaced_visits(1, 2, 3))
        result = await _engine(source).query_visits(VisitQuery())
        assert result.total_recordings == 100
        assert result.num_recordings == 6
        assert result.num_visits == 2
        assert not result.has_more_visits
        assert all(v.complete for v in result.visits)

    @pytest.mark.asyncio
    async def test_resumption_matches_full_scan(self) -> None:
        recordings = _single_visit_devices() + _spaced_visits(4, 3, 4, first_id=500)
        full = await _engine(InMemoryRecordingSource(recordings)).query_visits(VisitQuery())

        source = InMemoryRecordingSource(recordings)
        resumed = []
        offset = 0
        for _ in range(20):
            part = await _engine(source).query_visits(VisitQuery(limit=1, offset=offset))
            resumed.extend(part.visits)
            if not part.has_more_visits:
                break
            offset = part.query_offset

        assert sorted(map(_key, resumed)) == sorted(map(_key, full.visits))
        recording_ids = [e.recording_id for v in resumed for e in v.events]
        assert len(recording_ids) == len(set(recording_ids)) == len(recordings)
        visit_ids = [v.visit_id for v in resumed]
        assert len(visit_ids) == len(set(visit_ids))

    @pytest.mark.asyncio
    async def test_offset_of_pending_visit_when_stopping_early(self) -> None:
        source = InMemoryRecordingSource(_spaced_visits(1, 4, 2))
        result = await _engine(source).query_visits(VisitQuery(limit=2))
        # Positions 0-3 hold the first two visits; the third opened at 4.
        assert result.num_visits == 2
        assert result.has_more_visits
        assert result.query_offset == 4

    @pytest.mark.asyncio
    async def test_offset_past_last_visit_when_exhausted(self) -> None:
        source = InMemoryRecordingSource(_spaced_visits(1, 3, 2))
        result = await _engine(source).query_visits(VisitQuery(limit=2))
        # The second page reaches the end, so the open visit completes too.
        assert result.num_visits == 3
        assert not result.has_more_visits
        assert result.query_offset == 6


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_between_iterations_returns_complete_visits(self) -> None:
        cancel = asyncio.Event()
        source = CancellingSource(cancel, _spaced_visits(1, 4, 5))
        result = await _engine(source).query_visits(VisitQuery(limit=5), cancel=cancel)

        assert len(source.requests) == 1
        assert result.num_visits == 1
        assert result.visits[0].event_count == 5
        assert result.has_more_visits
        assert result.query_offset == 5

    @pytest.mark.asyncio
    async def test_cancel_before_start_fetches_nothing(self) -> None:
        cancel = asyncio.Event()
        cancel.set()
        source = CountingSource(_spaced_visits(1, 1, 2))
        result = await _engine(source).query_visits(VisitQuery(offset=1), cancel=cancel)
        assert source.requests == []
        assert result.visits == []
        assert result.has_more_visits
        assert result.query_offset == 1


class TestFailures:
    @pytest.mark.asyncio
    async def test_source_failure_propagates(self) -> None:
        with pytest.raises(RuntimeError, match="database unavailable"):
            await _engine(BrokenSource()).query_visits(VisitQuery())

    @pytest.mark.asyncio
    async def test_audio_fetch_failure_propagates(self) -> None:
        source = BrokenAudioSource(_spaced_visits(1, 1, 2))
        with pytest.raises(RuntimeError, match="event store unavailable"):
            await _engine(source).query_visits(VisitQuery())

    @pytest.mark.asyncio
    async def test_missing_total_count_rejected(self) -> None:
        with pytest.raises(SourceContractError):
            await _engine(CountlessSource(_spaced_visits(1, 1, 2))).query_visits(VisitQuery())

    def test_invalid_limit_rejected(self) -> None:
        with pytest.raises(Exception):
            VisitQuery(limit=0)

    def test_invalid_max_results_rejected(self) -> None:
        with pytest.raises(ValueError):
            VisitAggregationEngine(InMemoryRecordingSource(), max_visit_query_results=0)


class TestAudioBait:
    @pytest.mark.asyncio
    async def test_bait_matched_and_named_once_per_invocation(self) -> None:
        recordings = _spaced_visits(1, 2, 3)
        source = CountingSource(
            recordings,
            audio_events=[_bait(1, 999, file_id=7), _bait(2, 939, file_id=8)],
            files=[AudioFile(file_id=7, name="possum.mp3")],
        )
        result = await _engine(source).query_visits(VisitQuery())

        assert source.lookups == [{7, 8}]
        newest, older = result.visits
        # The older bait is also the nearest play before the newer visit.
        assert [e.file_name for e in newest.audio_bait_events] == ["possum.mp3", ""]
        assert newest.audio_bait_visit
        assert [e.file_name for e in older.audio_bait_events] == [""]
        assert result.summary.device_map[1].audio_bait

    @pytest.mark.asyncio
    async def test_to_dict_reports_counts(self) -> None:
        result = await _engine(InMemoryRecordingSource(_spaced_visits(1, 2, 2))).query_visits(VisitQuery())
        payload = result.to_dict()
        assert payload["num_visits"] == 2
        assert payload["has_more_visits"] is False
        assert payload["query_offset"] == 4
        assert payload["devices"][0]["visit_count"] == 2
