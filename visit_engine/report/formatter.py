"""ReportFormatter — flattens a VisitReport into fixed-width string rows.

This is the export boundary: the only place report rows become columns.
Times are rendered in the configured report time zone.
"""

from __future__ import annotations

import csv
import io
from datetime import datetime

from visit_engine.domain.enums import RowType
from visit_engine.domain.report import (
    AudioBaitRow,
    DeviceSummaryRow,
    EventRow,
    ReportRow,
    VisitReport,
    VisitRow,
)
from visit_engine.foundation.clock import report_zone

VISIT_COLUMNS = [
    "Visit ID",
    "Group",
    "Device",
    "Type",
    "AssumedTag",
    "What",
    "Rec ID",
    "Date",
    "Start",
    "End",
    "Confidence",
    "# Events",
    "Audio Played",
    "URL",
]

DEVICE_COLUMNS = [
    "Device ID",
    "Device Name",
    "Group Name",
    "First Visit",
    "Last Visit",
    "# Visits",
    "Avg Events per Visit",
    "Animal",
    "Visits",
    "Using Audio Bait",
]


def join_url(base: str, *parts: object) -> str:
    """Join URL segments with single slashes."""
    segments = [base.rstrip("/")] if base else []
    segments.extend(str(p).strip("/") for p in parts if p is not None and str(p) != "")
    return "/".join(segments)


class ReportFormatter:
    """Renders report rows as lists of strings.

    Args:
        timezone: IANA zone used for every date and time column.
        recording_url_base: Prefix for per-track recording links.
    """

    def __init__(self, timezone: str = "UTC", recording_url_base: str = "") -> None:
        self._zone = report_zone(timezone)
        self._url_base = recording_url_base

    # ── Tables ───────────────────────────────────────────────────────────

    def visit_table(self, report: VisitReport) -> list[list[str]]:
        return [list(VISIT_COLUMNS)] + [self.format_row(r) for r in report.rows]

    def device_table(self, report: VisitReport) -> list[list[str]]:
        return [list(DEVICE_COLUMNS)] + [self.format_device_row(r) for r in report.device_rows]

    def to_table(self, report: VisitReport) -> list[list[str]]:
        """Device summary, a blank separator row, then the visit table."""
        return self.device_table(report) + [[]] + self.visit_table(report)

    def to_csv(self, report: VisitReport) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerows(self.to_table(report))
        return buf.getvalue()

    # ── Rows ─────────────────────────────────────────────────────────────

    def format_row(self, row: ReportRow) -> list[str]:
        if isinstance(row, VisitRow):
            return [
                str(row.visit_id),
                row.group_name,
                row.device_name,
                RowType.VISIT.value,
                row.assumed_tag,
                row.what,
                "",
                self._date(row.start),
                self._time(row.start),
                self._time(row.end),
                "",
                str(row.event_count),
                str(row.audio_bait_visit).lower(),
                "",
            ]
        if isinstance(row, EventRow):
            return [
                "",
                "",
                "",
                RowType.EVENT.value,
                row.assumed_tag,
                row.what,
                str(row.recording_id),
                self._date(row.start),
                self._time(row.start),
                self._time(row.end),
                f"{row.confidence}%",
                "",
                "",
                join_url(self._url_base, row.recording_id, row.track_id),
            ]
        if isinstance(row, AudioBaitRow):
            return [
                "",
                "",
                "",
                RowType.AUDIO_BAIT.value,
                "",
                row.file_name,
                "",
                self._date(row.played_at),
                self._time(row.played_at),
                "",
                "",
                "",
                row.audio_played,
                "",
            ]
        raise TypeError(f"unknown report row: {type(row).__name__}")

    def format_device_row(self, row: DeviceSummaryRow) -> list[str]:
        if row.animal is not None:
            animals, visits = row.animal, str(row.visit_count)
        else:
            animals = ";".join(row.animals)
            visits = ";".join(str(c) for c in row.animal_visit_counts)
        return [
            str(row.device_id),
            row.device_name,
            row.group_name,
            self._datetime(row.first_visit),
            self._datetime(row.last_visit),
            str(row.visit_count),
            f"{row.avg_events_per_visit:g}",
            animals,
            visits,
            str(row.audio_bait).lower(),
        ]

    # ── Helpers ──────────────────────────────────────────────────────────

    def _date(self, dt: datetime) -> str:
        return dt.astimezone(self._zone).strftime("%Y-%m-%d")

    def _time(self, dt: datetime) -> str:
        return dt.astimezone(self._zone).strftime("%H:%M:%S")

    def _datetime(self, dt: datetime) -> str:
        return dt.astimezone(self._zone).strftime("%Y-%m-%d %H:%M:%S")
