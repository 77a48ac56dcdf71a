#!/usr/bin/env python3
"""
Pydantic settings model and configuration loading for pingrunner.
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

CONFIG_ENV = "PINGRUNNER_CONFIG"
COMMAND_ENV = "PINGRUNNER_COMMAND"
MAX_WORKERS_ENV = "PINGRUNNER_MAX_WORKERS"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class PingSettings(BaseModel):
    """Settings for building and running ping invocations."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    command: str = Field(default="ping", description="Diagnostic binary to launch")
    probe_count: int = Field(default=1, ge=1, le=1000, description="Probes per run")
    reply_marker: Optional[str] = Field(
        default="bytes from",
        description="Output text that forces exit code 0 off Windows; null disables",
    )
    max_workers: int = Field(default=8, ge=1, le=256, description="Worker pool size")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=False, description="Render logs as JSON")

    @field_validator("command")
    @classmethod
    def command_must_be_valid(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("command cannot be empty")
        return v.strip()

    @field_validator("reply_marker")
    @classmethod
    def reply_marker_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("reply_marker must be null or non-blank")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_valid(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {sorted(_LOG_LEVELS)}")
        return level


def load_settings(path: Optional[Path] = None) -> PingSettings:
    """
    Load settings from a YAML file and the environment.

    The file is ``path`` if given, else ``$PINGRUNNER_CONFIG`` if set; with
    neither, defaults are used. ``PINGRUNNER_COMMAND`` and
    ``PINGRUNNER_MAX_WORKERS`` override the file.
    """
    if path is None and os.getenv(CONFIG_ENV):
        path = Path(os.environ[CONFIG_ENV])

    data = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {config_path}")

    if os.getenv(COMMAND_ENV):
        data["command"] = os.environ[COMMAND_ENV]
    if os.getenv(MAX_WORKERS_ENV):
        data["max_workers"] = os.environ[MAX_WORKERS_ENV]

    return PingSettings(**data)
