"""Configuration models.

Config structure (YAML):
    sessions_root: .convflow/sessions
    storage_key: workflow
    log_level: WARNING
    engine:
      skip_pending_on_cancel: false
      enforce_dependencies: false
"""

import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from convflow.domain.constants import DEFAULT_SESSIONS_ROOT, DEFAULT_STORAGE_KEY


class EngineConfig(BaseModel):
    """Behavior switches for the workflow engine.

    Both default to off, which leaves dependencies advisory and cancelled
    work in whatever status it had.
    """

    model_config = ConfigDict(extra="forbid")

    skip_pending_on_cancel: bool = False
    enforce_dependencies: bool = False


class ConvflowConfig(BaseModel):
    """Top-level configuration after merging all config layers."""

    model_config = ConfigDict(extra="forbid")

    sessions_root: Path = DEFAULT_SESSIONS_ROOT
    storage_key: str = DEFAULT_STORAGE_KEY
    log_level: str = "WARNING"
    engine: EngineConfig = Field(default_factory=EngineConfig)

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("storage_key")
    @classmethod
    def _storage_key_non_empty(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("storage_key must be non-empty")
        return v2
