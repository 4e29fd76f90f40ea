"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "visit-engine"
    debug: bool = False
    log_level: str = "INFO"

    # Windowed fetch loop
    max_visit_query_results: int = 5000

    # Visit stitching and audio-bait matching policy
    visit_interval_minutes: float = 10.0
    audio_bait_window_hours: float = 24.0

    # Report rendering
    report_timezone: str = "UTC"
    recording_url_base: str = ""

    model_config = {"env_prefix": "VISIT_ENGINE_"}


settings = Settings()
