"""
Settings Configuration

Centralized runtime configuration for the progress and proctoring engine.
All values are loaded from environment variables (optionally via .env).
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    return int(value)


def get_float_env(key: str, default: Optional[float]) -> Optional[float]:
    """Get a float value from environment variable. An empty value yields None."""
    value = os.getenv(key)
    if value is None:
        return default
    if value.strip() == "":
        return None
    return float(value)


WEIGHTING_UNWEIGHTED = "unweighted"
WEIGHTING_DURATION = "duration"


@dataclass
class Settings:
    """
    Runtime settings.

    To add a new setting:
    1. Add it here as a field
    2. Load it in from_env()
    3. Pass it to the service that needs it
    """
    database_url: str = "sqlite+aiosqlite:///./learntrack.db"
    environment: str = "development"
    log_level: str = "INFO"
    debug_errors: bool = False

    # Progress engine
    progress_max_retries: int = 3
    store_timeout_seconds: float = 5.0
    recent_activity_limit: int = 5
    overall_progress_weighting: str = WEIGHTING_UNWEIGHTED
    video_pass_score: Optional[float] = 70.0

    # Proctoring
    proctoring_low_bound: float = 40.0
    proctoring_mid_bound: float = 70.0
    proctoring_rules_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            environment=os.getenv("ENVIRONMENT", cls.environment),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            debug_errors=get_bool_env("DEBUG_ERRORS", False),
            progress_max_retries=get_int_env("PROGRESS_MAX_RETRIES", cls.progress_max_retries),
            store_timeout_seconds=get_float_env("STORE_TIMEOUT_SECONDS", cls.store_timeout_seconds),
            recent_activity_limit=get_int_env("RECENT_ACTIVITY_LIMIT", cls.recent_activity_limit),
            overall_progress_weighting=os.getenv(
                "OVERALL_PROGRESS_WEIGHTING", cls.overall_progress_weighting
            ).lower(),
            video_pass_score=get_float_env("VIDEO_PASS_SCORE", cls.video_pass_score),
            proctoring_low_bound=get_float_env("PROCTORING_LOW_BOUND", cls.proctoring_low_bound),
            proctoring_mid_bound=get_float_env("PROCTORING_MID_BOUND", cls.proctoring_mid_bound),
            proctoring_rules_file=os.getenv("PROCTORING_RULES_FILE") or None,
        )


settings = Settings.from_env()
