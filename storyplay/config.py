"""Process settings read from the environment (and .env, via python-dotenv).

    AI_PROVIDER        gemini | openai                 (default gemini)
    AI_MODEL           model id                        (default gemini-1.5-flash)
    AI_API_KEY         API key; GEMINI_API_KEY also accepted
    AI_BASE_URL        override the backend base URL
    AI_TIMEOUT         HTTP timeout in seconds         (default 30)
    AI_MAX_ATTEMPTS    attempts per LLM call           (default 4)
    AI_BASE_DELAY      first retry backoff, seconds    (default 1.0)
    HISTORY_WINDOW     history turns sent to the LLM   (default 6)
    HINT_COST          score deducted per hint         (default 5)
    EVIDENCE_SCORE     score per discovered evidence   (default 10)
    BEAT_DELAY_SCALE   multiplier on scripted delays   (default 1.0, 0 disables)
    MAX_SESSIONS       sessions kept in memory         (default 500)
    SESSION_IDLE_SECONDS  idle seconds before eviction (default 3600, 0 keeps)
    STORIES_DIR        story descriptor directory      (default presets/stories)
    LOG_LEVEL          root log level                  (default INFO)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ROOT = Path(__file__).parent.parent


class Settings(BaseModel):
    ai_provider: Literal["gemini", "openai"] = "gemini"
    ai_model: str = "gemini-1.5-flash"
    ai_api_key: str = ""
    ai_base_url: str = ""
    ai_timeout: float = 30.0
    ai_max_attempts: int = Field(default=4, ge=1)
    ai_base_delay: float = Field(default=1.0, ge=0)

    history_window: int = Field(default=6, ge=0)
    hint_cost: int = Field(default=5, ge=0)
    evidence_score: int = Field(default=10, ge=0)
    beat_delay_scale: float = Field(default=1.0, ge=0)

    max_sessions: int = Field(default=500, ge=1)
    session_idle_seconds: float = Field(default=3600.0, ge=0)

    stories_dir: Path = ROOT / "presets" / "stories"
    log_level: str = "INFO"


_ENV_FIELDS = {
    "AI_PROVIDER": "ai_provider",
    "AI_MODEL": "ai_model",
    "AI_API_KEY": "ai_api_key",
    "AI_BASE_URL": "ai_base_url",
    "AI_TIMEOUT": "ai_timeout",
    "AI_MAX_ATTEMPTS": "ai_max_attempts",
    "AI_BASE_DELAY": "ai_base_delay",
    "HISTORY_WINDOW": "history_window",
    "HINT_COST": "hint_cost",
    "EVIDENCE_SCORE": "evidence_score",
    "BEAT_DELAY_SCALE": "beat_delay_scale",
    "MAX_SESSIONS": "max_sessions",
    "SESSION_IDLE_SECONDS": "session_idle_seconds",
    "STORIES_DIR": "stories_dir",
    "LOG_LEVEL": "log_level",
}


def load_settings(env_file: Path | None = None) -> Settings:
    """Load .env (if present) and build Settings from environment variables."""
    load_dotenv(env_file or ROOT / ".env")
    values: dict[str, str] = {}
    for env_name, field_name in _ENV_FIELDS.items():
        raw = os.getenv(env_name, "")
        if raw:
            values[field_name] = raw
    if "ai_api_key" not in values and os.getenv("GEMINI_API_KEY"):
        values["ai_api_key"] = os.environ["GEMINI_API_KEY"]
    return Settings.model_validate(values)
