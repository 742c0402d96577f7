"""
StareWare Proctoring Service Configuration

Defaults follow the product's observed behaviour: three warnings before
auto-submit, a one hour default time limit and two second notices.
"""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Configuration for the proctoring service."""

    # API Settings
    APP_NAME: str = "StareWare Proctoring Service"
    DEBUG: bool = True
    PORT: int = 8001

    # Session defaults
    DEFAULT_TIME_LIMIT_SECONDS: int = 3600
    MAX_WARNINGS: int = 3
    FACE_GRACE_SECONDS: float = 5.0  # 1.0 for the landmark model path
    NOTICE_DISMISS_SECONDS: float = 2.0
    AUTO_SUBMIT_DELAY_SECONDS: float = 2.0
    REQUIRE_ACKNOWLEDGMENT: bool = False
    STRICT_MODE: bool = False
    FACE_CONFIDENCE_THRESHOLD: float = 0.5
    FULLSCREEN_FAILURE_IS_VIOLATION: bool = False
    FACE_ABSENCE_REARM_SECONDS: Optional[float] = None

    # Server-side countdown (otherwise the client posts ticks)
    AUTO_TICK: bool = False
    SESSION_RETENTION_SECONDS: float = 60.0

    # Write results on the executor so file I/O never blocks the event loop
    BACKGROUND_PERSISTENCE: bool = True

    # Storage
    TESTS_PATH: str = "data/tests"
    RESULTS_PATH: str = "data/test_results.json"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_DIR: str = "logs"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
