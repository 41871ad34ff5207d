from typing import Optional
from pydantic import BaseModel, Field
from functools import lru_cache
import os

DEFAULT_ANSWER_TIMEOUT_SECONDS = 300.0
DEFAULT_MAX_QUESTIONS = 15


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime settings, read from OCTTO_* environment variables"""
    host: str = Field(default="127.0.0.1", description="Interface transports bind to")
    state_dir: str = Field(default=".octto", description="Directory for brainstorm snapshots")
    answer_timeout: float = Field(default=DEFAULT_ANSWER_TIMEOUT_SECONDS, gt=0, description="Default blocking wait, seconds")
    max_questions: int = Field(default=DEFAULT_MAX_QUESTIONS, ge=1, description="Question cap per brainstorm")
    skip_browser: bool = Field(default=False, description="Never open a browser (headless)")
    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            host=os.getenv("OCTTO_HOST", defaults.host),
            state_dir=os.getenv("OCTTO_STATE_DIR", defaults.state_dir),
            answer_timeout=float(os.getenv("OCTTO_ANSWER_TIMEOUT", defaults.answer_timeout)),
            max_questions=int(os.getenv("OCTTO_MAX_QUESTIONS", defaults.max_questions)),
            skip_browser=_env_bool("OCTTO_SKIP_BROWSER", defaults.skip_browser),
            log_level=os.getenv("OCTTO_LOG_LEVEL", defaults.log_level),
            log_format=os.getenv("OCTTO_LOG_FORMAT", defaults.log_format),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings for this process, read once"""
    return Settings.from_env()
