"""Application settings loaded from the environment (and .env) via pydantic-settings."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class TweengraphSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    output_root: Path = Field(
        default=Path("outputs"), validation_alias="TWEENGRAPH_OUTPUTS", validate_default=True
    )
    log_level: str = Field(default="INFO", validation_alias="TWEENGRAPH_LOG_LEVEL")

    @field_validator("output_root", mode="before")
    @classmethod
    def _expand_root(cls, value) -> Path:
        return Path(value).expanduser().resolve()

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level


_settings: Optional[TweengraphSettings] = None


def get_settings() -> TweengraphSettings:
    global _settings
    if _settings is None:
        _settings = TweengraphSettings()
        logger.debug("Loaded settings: output_root=%s", _settings.output_root)
    return _settings


def output_root() -> Path:
    return get_settings().output_root


def reset_settings_cache() -> None:
    global _settings
    _settings = None
