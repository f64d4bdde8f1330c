# config.py
# Runtime settings, read from the environment (and a local .env if present).

import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from rich.logging import RichHandler


class Settings(BaseModel):
    recent_failures: int = Field(default=20, ge=1, description="Ring buffer size per metric record.")
    step_max_attempts: int = Field(default=2, ge=1, description="Attempts for retry_on_fail steps.")
    rollback_max_attempts: int = Field(default=1, ge=1)
    rollback_backoff_seconds: float = Field(default=0.0, ge=0.0)
    rollback_backoff_multiplier: float = Field(default=2.0, ge=1.0)
    log_level: str = "INFO"


_ENV = {
    "recent_failures": "PROCESS_ENGINE_RECENT_FAILURES",
    "step_max_attempts": "PROCESS_ENGINE_STEP_MAX_ATTEMPTS",
    "rollback_max_attempts": "PROCESS_ENGINE_ROLLBACK_MAX_ATTEMPTS",
    "rollback_backoff_seconds": "PROCESS_ENGINE_ROLLBACK_BACKOFF_SECONDS",
    "rollback_backoff_multiplier": "PROCESS_ENGINE_ROLLBACK_BACKOFF_MULTIPLIER",
    "log_level": "PROCESS_ENGINE_LOG_LEVEL",
}


def load_settings() -> Settings:
    """Build Settings from PROCESS_ENGINE_* variables; unset ones keep defaults."""
    load_dotenv()
    values = {field: os.getenv(var) for field, var in _ENV.items()}
    return Settings.model_validate({k: v for k, v in values.items() if v not in (None, "")})


def configure_logging(level: str = "INFO") -> None:
    """Route the package's loggers through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
