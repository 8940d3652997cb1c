"""Static tracker configuration constants and environment settings."""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PERIOD_LENGTH_SECONDS = 720
COUNTDOWN_CUE_SECONDS = 10
PENALTY_DURATION_PRESETS: tuple[int, ...] = (30, 60, 90, 120, 180)
DEFAULT_PENALTY_DURATION = 30

LACROSSE_POSITIONS: tuple[str, ...] = (
    "Attack",
    "Midfield",
    "Defense",
    "Goalie",
    "LSM",
    "Face Off Specialist",
)

# Reaction drill timing, all in seconds unless noted.
DRILL_COUNTDOWN_BEEPS = 5
DRILL_BEEP_SPACING = 1.0
DRILL_SET_CUE_DELAY = 0.75
DRILL_GO_DELAY_RANGE_MS: tuple[int, int] = (500, 1500)
DRILL_NEXT_REP_PAUSE = 5.0
DRILL_TIMED_CUTOFF_SECONDS = 5
DRILL_FRAME_INTERVAL = 1.0 / 60.0
DRILL_COUNT_PRESETS: tuple[int, ...] = (1, 3, 5, 20)
DEFAULT_TIMED_SESSION_MINUTES = 5

# Mean absolute luma difference (0-255) that counts as motion. Higher is less sensitive.
SENSITIVITY_THRESHOLD = 10.0
VIDEO_WIDTH = 480
VIDEO_HEIGHT = 360

# name -> (start Hz, end Hz, seconds, gain)
CUE_TONES: dict[str, tuple[float, float, float, float]] = {
    "countdown": (880.0, 880.0, 0.1, 0.3),
    "down": (440.0, 440.0, 0.2, 0.3),
    "set": (550.0, 550.0, 0.2, 0.3),
    "whistle": (3000.0, 1500.0, 0.3, 0.3),
    "buzzer": (800.0, 800.0, 0.8, 0.5),
}
CUSTOM_SOUND_NAMES: tuple[str, ...] = ("down", "set", "whistle")

AI_FALLBACK_SUMMARY = "Could not generate AI summary. Please check your API key and connection."
AI_FALLBACK_ANALYSIS = "An error occurred while communicating with the AI. Please check your API key and connection."


class Settings(BaseSettings):
    """Environment-driven settings with local defaults."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    data_path: str = Field(default="lacrosse_db.json", alias="LAX_DATA_PATH")
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    summary_model: str = Field(default="gpt-4o-mini", alias="LAX_SUMMARY_MODEL")
    analysis_model: str = Field(default="gpt-4o", alias="LAX_ANALYSIS_MODEL")
    log_level: str = Field(default="INFO", alias="LAX_LOG_LEVEL")
    seed_demo_data: bool = Field(default=True, alias="LAX_SEED_DEMO_DATA")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str | int = "INFO") -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
