"""
Configuration settings for the application
"""

import os
from typing import List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """Application settings"""

    # Document store
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./admission_lifecycle.db")
    USE_FIREBASE: bool = os.getenv("USE_FIREBASE", "false").lower() in ("1", "true", "yes")
    FIREBASE_CREDENTIALS_JSON: str | None = os.getenv("FIREBASE_CREDENTIALS_JSON")
    FIREBASE_CREDENTIALS_FILE: str | None = os.getenv("FIREBASE_CREDENTIALS_FILE")
    FIREBASE_CREDENTIALS_B64: str | None = os.getenv("FIREBASE_CREDENTIALS_B64")
    SQL_POLL_INTERVAL_SECONDS: float = 2.0
    CAS_MAX_ATTEMPTS: int = 3

    # Security
    ADMIN_TOKEN: str = os.getenv("ADMIN_TOKEN", "admin_token_123")

    # Application
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    ENABLE_WORKER: bool = os.getenv("ENABLE_WORKER", "true").lower() in ("1", "true", "yes")
    # at most half the sorry window (twice the tolerance) so a pass always lands inside it
    SCAN_INTERVAL_SECONDS: float = 15.0

    # Lifecycle timing
    NOTIFICATION_DEDUP_WINDOW_SECONDS: int = 5 * 60
    SORRY_LEAD_SECONDS: int = 60
    SORRY_TOLERANCE_SECONDS: int = 30
    STARTUP_GRACE_SECONDS: int = 10
    STALE_DEADLINE_SECONDS: int = 5
    DEFAULT_RESPONSE_WINDOW_HOURS: int = 7 * 24
    MIN_REPLACEMENT_WINDOW_HOURS: int = 2 * 24

    # CORS
    ALLOW_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5000",
        "http://localhost:8000",
    ]

    # Rate limiting
    RATE_LIMIT_PER_MINUTE: int = 30

    class Config:
        env_file = ".env"

settings = Settings()
