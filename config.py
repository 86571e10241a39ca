"""
Application configuration: environment-aware settings.

All environment variables are documented here. See .env.example for a template.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).parent

load_dotenv(BASE_DIR / ".env")


# ---------------------------------------------------------------------------
# Feature flags: simple dict, no external service
# ---------------------------------------------------------------------------
FEATURE_FLAGS: dict[str, bool] = {
    "ai_summaries": True,
    "video_rooms": True,
    "daily_claim": True,
}


class BaseConfig:
    # Core Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-in-production")
    DATABASE = os.environ.get("DATABASE_PATH", str(BASE_DIR / "studypair.db"))

    # Session security
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    PERMANENT_SESSION_LIFETIME = 86400 * 30

    # Uploads (notes, papers, thumbnails)
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", str(BASE_DIR / "uploads"))
    MAX_CONTENT_LENGTH = 25 * 1024 * 1024  # 25 MB request cap
    MAX_NOTE_FILE_SIZE = 10 * 1024 * 1024  # 10 MB per document

    # DeepSeek (OpenAI-compatible API)
    DEEPSEEK_API_KEY = os.environ.get("DEEPSEEK_API_KEY", "")
    DEEPSEEK_BASE_URL = os.environ.get("DEEPSEEK_BASE_URL", "https://api.deepseek.com")
    DEEPSEEK_MODEL = os.environ.get("DEEPSEEK_MODEL", "deepseek-chat")

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Redis (cache, rate limits, Socket.IO fan-out)
    REDIS_URL = os.environ.get("REDIS_URL", "")
    RATELIMIT_STORAGE_URI = os.environ.get("REDIS_URL", "") or "memory://"
    SOCKETIO_MESSAGE_QUEUE = os.environ.get("REDIS_URL", "") or None
    SOCKETIO_CORS_ORIGINS = os.environ.get("SOCKETIO_CORS_ORIGINS", "*")

    # University class timetable service used by the schedule lookup
    CAMPUS_TIMETABLE_URL = os.environ.get(
        "CAMPUS_TIMETABLE_URL",
        "https://simsweb4.uitm.edu.my/estudent/class_timetable/index_result.cfm",
    )
    CAMPUS_TIMETABLE_SEMESTER = os.environ.get("CAMPUS_TIMETABLE_SEMESTER", "20254")
    CAMPUS_TIMETABLE_TIMEOUT = 20

    BASE_URL = os.environ.get("BASE_URL", "http://localhost:5001")

    FEATURE_FLAGS = FEATURE_FLAGS


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
    SESSION_COOKIE_SECURE = True

    @classmethod
    def validate(cls):
        """Fail fast on missing or insecure configuration in production."""
        errors: list[str] = []

        if cls.SECRET_KEY in ("dev-key-change-in-production", ""):
            errors.append("SECRET_KEY must be set to a secure value in production.")

        if not cls.DEEPSEEK_API_KEY:
            warnings.warn("DEEPSEEK_API_KEY is not set; AI quiz summaries will be unavailable.")

        if errors:
            raise RuntimeError(
                "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class TestingConfig(BaseConfig):
    TESTING = True
    DEEPSEEK_API_KEY = ""


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
