"""
Runtime configuration and logging setup for the itinerary planner.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from entry_store import DEFAULT_COMPANY_SCOPE

ENV_PREFIX = "ITINERARY_"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


class AppConfig(BaseModel):
    """Application-level settings. View settings (mode, anchor, filters) live in the workbook instead."""

    workbook_path: Optional[Path] = None
    company_scope: str = Field(default=DEFAULT_COMPANY_SCOPE)

    log_level: str = Field(default="INFO")
    log_file: Optional[Path] = None

    # Bounded policy for the drag -> store round-trip.
    persistence_timeout_s: float = Field(default=10.0, gt=0)
    persistence_max_attempts: int = Field(default=3, ge=1, le=10)
    persistence_backoff_s: float = Field(default=0.25, ge=0)

    min_visible_height_percent: float = Field(default=4.0, ge=0.0, le=100.0)

    @field_validator("company_scope")
    @classmethod
    def _scope_not_empty(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("company_scope is required.")
        return v

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        v = (v or "").strip().upper() or "INFO"
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("log_level must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL.")
        return v


def load_config(environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build an AppConfig from ITINERARY_* environment variables (ITINERARY_LOG_LEVEL -> log_level, ...)."""
    env = os.environ if environ is None else environ
    values = {}
    for name in AppConfig.model_fields:
        raw = env.get(ENV_PREFIX + name.upper())
        if raw is not None and raw.strip():
            values[name] = raw.strip()
    return AppConfig(**values)


def init_logging(config: AppConfig) -> None:
    """Configure basic logging to console and optional file."""
    handlers = [logging.StreamHandler()]
    if config.log_file is not None:
        handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    logging.getLogger(__name__).info(
        "Logging initialized. Workbook at %s, scope %s", config.workbook_path, config.company_scope
    )
