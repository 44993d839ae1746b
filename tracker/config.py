"""Progress Tracker — Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Database ──
    database_url: str = ""

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    export_hour: int = 0  # Daily export at midnight UTC

    # ── Export ──
    exports_dir: str = "./exports"
    max_exports: int = 10

    # ── Metrics ──
    max_periods: int = 1000
    default_progression_type: str = "linear"
    default_amber_tolerance: float = 5.0
    default_red_tolerance: float = 10.0

    # ── Consistency Report ──
    vacation_months: List[int] = [8, 12]
    vacation_growth_ratio: float = 1.5
    back_loaded_ratio: float = 2.0

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/progress-tracker.db"
        return "sqlite:///./progress-tracker.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
