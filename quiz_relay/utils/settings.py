"""Deployment settings read from the environment or a ``.env`` file."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from quiz_relay.constants.network_constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEVICE_IDLE_TIMEOUT_SECONDS,
    MAX_DEVICES,
    RESULT_STORE_TIMEOUT_SECONDS,
)
from quiz_relay.constants.quiz_constants import (
    DEFAULT_GATED_QUIZ_TYPES,
    FILL_BLANK_SIMILARITY_THRESHOLD,
    OPEN_ENDED_SIMILARITY_THRESHOLD,
    PROGRESS_SNAPSHOT_MAX_AGE_DAYS,
)
from quiz_relay.core.models import QuizType


class Settings(BaseSettings):
    host: str = Field(default=DEFAULT_HOST)
    port: int = Field(default=DEFAULT_PORT)
    log_level: str = Field(default="info")

    # Quiz types whose results stay hidden from guests until they sign in.
    gated_quiz_types: Annotated[frozenset[QuizType], NoDecode] = Field(default=DEFAULT_GATED_QUIZ_TYPES)

    # Directory holding one durable relay file per device; in memory when unset.
    relay_store_dir: str | None = Field(default=None)

    # Idle devices are dropped from memory; file-backed relay data survives on disk.
    device_idle_timeout_seconds: float = Field(default=DEVICE_IDLE_TIMEOUT_SECONDS)
    max_devices: int = Field(default=MAX_DEVICES, ge=1)

    # The in-process result store is used when no URL is configured.
    result_store_url: str | None = Field(default=None)
    result_store_timeout_seconds: float = Field(default=RESULT_STORE_TIMEOUT_SECONDS)

    progress_snapshot_max_age_days: int = Field(default=PROGRESS_SNAPSHOT_MAX_AGE_DAYS)
    fill_blank_similarity_threshold: float = Field(default=FILL_BLANK_SIMILARITY_THRESHOLD)
    open_ended_similarity_threshold: float = Field(default=OPEN_ENDED_SIMILARITY_THRESHOLD)

    @field_validator("gated_quiz_types", mode="before")
    @classmethod
    def parse_gated_types(cls, value):
        if isinstance(value, str):
            items = [item.strip() for item in value.split(",") if item.strip()]
            return frozenset(QuizType(item) for item in items)
        return value

    model_config = SettingsConfigDict(
        env_prefix="QUIZRELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
