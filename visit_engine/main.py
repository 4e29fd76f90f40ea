"""visit-engine — visit reconstruction service.

This is the application entry point.  It wires the recording source, the
visit aggregation engine, the report formatter and the HTTP endpoints
together.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import FastAPI

from visit_engine.adapters.memory import InMemoryRecordingSource
from visit_engine.api.visits import create_visits_router
from visit_engine.config import settings
from visit_engine.core.engine import VisitAggregationEngine
from visit_engine.domain.interval import GapIntervalPolicy
from visit_engine.report.formatter import ReportFormatter

# ── Logging ──────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

# ── Source & Engine ──────────────────────────────────────────────────────────

source = InMemoryRecordingSource()

engine = VisitAggregationEngine(
    source,
    interval_policy=GapIntervalPolicy(timedelta(minutes=settings.visit_interval_minutes)),
    audio_bait_window=timedelta(hours=settings.audio_bait_window_hours),
    max_visit_query_results=settings.max_visit_query_results,
)

formatter = ReportFormatter(
    timezone=settings.report_timezone,
    recording_url_base=settings.recording_url_base,
)

# ── App ──────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.app_name,
    description="Visit reconstruction from field sensor recordings",
    version="0.1.0",
)

# ── Routes ───────────────────────────────────────────────────────────────────

app.include_router(create_visits_router(source, engine, formatter))


# ── Health ───────────────────────────────────────────────────────────────────

@app.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "recordings": source.recording_count,
        "visit_interval_minutes": settings.visit_interval_minutes,
        "max_visit_query_results": settings.max_visit_query_results,
    }
