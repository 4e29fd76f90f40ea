"""REST endpoints for visit queries and the visits report.

Paths:
    POST /api/dataset        load recordings/audio events into the source
    GET  /api/visits         complete visits as JSON, paginated by offset
    GET  /api/visits/report  the visits report as CSV

Each request builds its own engine invocation; nothing is shared between
requests except the read-only source.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Query
from fastapi.responses import PlainTextResponse

from visit_engine.adapters.base import RecordingFilter
from visit_engine.adapters.memory import InMemoryRecordingSource
from visit_engine.core.engine import VisitAggregationEngine, VisitQuery
from visit_engine.models.dataset import DatasetAck, DatasetUpload
from visit_engine.report.builder import build_visit_report
from visit_engine.report.formatter import ReportFormatter

logger = logging.getLogger(__name__)


def create_visits_router(
    source: InMemoryRecordingSource,
    engine: VisitAggregationEngine,
    formatter: ReportFormatter,
) -> APIRouter:
    """Factory that wires the visit endpoints to a source and engine."""

    router = APIRouter(prefix="/api", tags=["visits"])

    def _query(
        limit: Optional[int],
        offset: int,
        device_id: Optional[list[int]],
        group: Optional[list[str]],
    ) -> VisitQuery:
        return VisitQuery(
            filter=RecordingFilter(device_ids=device_id, group_names=group),
            limit=limit,
            offset=offset,
        )

    @router.post("/dataset")
    async def load_dataset(upload: DatasetUpload) -> DatasetAck:
        if upload.replace:
            source.clear()
        source.load(upload.recordings, upload.audio_events, upload.files)
        return DatasetAck(
            recordings=len(upload.recordings),
            audio_events=len(upload.audio_events),
            files=len(upload.files),
            total_recordings=source.recording_count,
        )

    @router.get("/visits")
    async def query_visits(
        limit: Optional[int] = Query(default=None, ge=1),
        offset: int = Query(default=0, ge=0),
        device_id: Optional[list[int]] = Query(default=None),
        group: Optional[list[str]] = Query(default=None),
        user_id: Optional[int] = Query(default=None, description="Requesting user, for tag preference"),
    ) -> dict[str, Any]:
        result = await engine.query_visits(
            _query(limit, offset, device_id, group),
            requesting_user_id=user_id,
        )
        return result.to_dict()

    @router.get("/visits/report", response_class=PlainTextResponse)
    async def visits_report(
        limit: Optional[int] = Query(default=None, ge=1),
        offset: int = Query(default=0, ge=0),
        device_id: Optional[list[int]] = Query(default=None),
        group: Optional[list[str]] = Query(default=None),
        user_id: Optional[int] = Query(default=None),
    ) -> PlainTextResponse:
        result = await engine.query_visits(
            _query(limit, offset, device_id, group),
            requesting_user_id=user_id,
        )
        report = build_visit_report(result)
        logger.info("Built visits report with %d row(s)", len(report.rows))
        return PlainTextResponse(
            formatter.to_csv(report),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="visits.csv"'},
        )

    return router
