"""Report builder — turns engine results into ordered report rows.

For each visit the builder emits the visit row, then the visit's events and
matched audio-bait plays merged newest first.  Events are already stored
newest first, so the merge walks the events once with a cursor over the
bait plays sorted newest first: before each event, every bait play later
than the event's start is emitted; bait older than every event goes last.
"""

from __future__ import annotations

from visit_engine.core.engine import VisitQueryResult
from visit_engine.domain.report import (
    AudioBaitRow,
    DeviceSummaryRow,
    EventRow,
    ReportRow,
    VisitReport,
    VisitRow,
)
from visit_engine.domain.recording import AudioBaitEvent
from visit_engine.domain.visit import Visit, VisitEvent
from visit_engine.store.device_summary import DeviceSummary


def visit_rows(visit: Visit) -> list[ReportRow]:
    """Visit row followed by interleaved event and audio-bait rows."""
    rows: list[ReportRow] = [
        VisitRow(
            visit_id=visit.visit_id,
            group_name=visit.group_name,
            device_name=visit.device_name,
            assumed_tag=visit.assumed_tag,
            what=visit.what,
            start=visit.start,
            end=visit.end,
            event_count=visit.event_count,
            audio_bait_visit=visit.audio_bait_visit,
        )
    ]

    baits = sorted(visit.audio_bait_events, key=lambda e: e.date_time, reverse=True)
    cursor = 0
    for event in visit.events:
        while cursor < len(baits) and baits[cursor].date_time > event.start:
            rows.append(_audio_bait_row(visit, baits[cursor]))
            cursor += 1
        rows.append(_event_row(visit, event))
    rows.extend(_audio_bait_row(visit, bait) for bait in baits[cursor:])
    return rows


def _event_row(visit: Visit, event: VisitEvent) -> EventRow:
    return EventRow(
        visit_id=visit.visit_id,
        assumed_tag=event.assumed_tag,
        what=event.what,
        recording_id=event.recording_id,
        track_id=event.track_id,
        start=event.start,
        end=event.end,
        confidence=event.confidence,
    )


def _audio_bait_row(visit: Visit, bait: AudioBaitEvent) -> AudioBaitRow:
    return AudioBaitRow(
        visit_id=visit.visit_id,
        file_name=bait.file_name,
        volume=bait.volume,
        played_at=bait.date_time,
    )


def device_summary_rows(summary: DeviceSummary) -> list[DeviceSummaryRow]:
    """One row per device, each followed by one row per animal seen there."""
    rows: list[DeviceSummaryRow] = []
    for device_id, devices in summary.device_map.items():
        if devices.visit_count == 0 or devices.start_time is None or devices.end_time is None:
            continue
        animals = devices.animal_summary()
        rows.append(
            DeviceSummaryRow(
                device_id=device_id,
                device_name=devices.device_name,
                group_name=devices.group_name,
                first_visit=devices.start_time,
                last_visit=devices.end_time,
                visit_count=devices.visit_count,
                avg_events_per_visit=round(devices.event_count / devices.visit_count, 1),
                animals=list(animals),
                animal_visit_counts=[s.visit_count for s in animals.values()],
                audio_bait=devices.audio_bait,
            )
        )
        for tag, animal in animals.items():
            rows.append(
                DeviceSummaryRow(
                    device_id=device_id,
                    device_name=animal.device_name,
                    group_name=animal.group_name,
                    first_visit=animal.start,
                    last_visit=animal.end,
                    visit_count=animal.visit_count,
                    avg_events_per_visit=round(animal.event_count / animal.visit_count, 1),
                    audio_bait=devices.audio_bait,
                    animal=tag,
                )
            )
    return rows


def build_visit_report(result: VisitQueryResult) -> VisitReport:
    """Assemble the full report for one engine invocation."""
    rows: list[ReportRow] = []
    for visit in result.visits:
        rows.extend(visit_rows(visit))
    return VisitReport(device_rows=device_summary_rows(result.summary), rows=rows)
