import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent  # backend/portal -> backend

# Load environment variables from backend/.env before settings are read
load_dotenv(BASE_DIR / ".env")


class Settings:
    """Runtime settings read from the environment"""

    def __init__(self):
        self.catalog_path = Path(
            os.getenv("EXAM_CATALOG_PATH") or BASE_DIR / "data" / "exam_catalog.json"
        )
        self.result_cache_dir = Path(
            os.getenv("RESULT_CACHE_DIR") or BASE_DIR / "data" / "result_cache"
        )
        self.submission_sink_url: Optional[str] = (
            os.getenv("SUBMISSION_SINK_URL") or ""
        ).strip() or None
        self.submission_sink_timeout = float(
            os.getenv("SUBMISSION_SINK_TIMEOUT") or 10.0
        )
        self.delivery_max_attempts = int(os.getenv("DELIVERY_MAX_ATTEMPTS") or 5)
        self.delivery_backoff_seconds = float(
            os.getenv("DELIVERY_BACKOFF_SECONDS") or 0.5
        )
        self.timer_tick_seconds = float(os.getenv("TIMER_TICK_SECONDS") or 1.0)
        self.log_level = (os.getenv("LOG_LEVEL") or "INFO").strip()
        self.cors_origins: List[str] = [
            origin.strip()
            for origin in (
                os.getenv("CORS_ORIGINS")
                or "http://localhost:3000,http://localhost:5173"
            ).split(",")
            if origin.strip()
        ]


def get_settings() -> Settings:
    return Settings()
