"""Load jobtrack config from TOML (e.g. jobtrack.toml) and the environment.

Config file is looked up in order:
  1. Path in JOBTRACK_CONFIG env var (if set)
  2. jobtrack.toml in the current working directory

If no file is found, built-in defaults are used (in-memory store). The
JOBTRACK_STORE_URL and JOBTRACK_LOG_LEVEL env vars override the file.

Example jobtrack.toml:

    store_url = "sqlite:///./jobs.db"
    log_level = "DEBUG"

    [worker]
    poll_interval = 2.0
    batch_size = 5
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

MEMORY_STORE_URL = "memory://"


class WorkerConfig(BaseModel):
    """Polling settings for stage workers."""

    model_config = {"frozen": True}

    poll_interval: float = Field(2.0, gt=0, description="Seconds between polls of an empty queue")
    batch_size: int = Field(5, gt=0, description="Queued jobs claimed per poll")


class JobtrackConfig(BaseModel):
    """Top-level configuration."""

    model_config = {"frozen": True}

    store_url: str = Field(MEMORY_STORE_URL, description="memory:// or an SQLAlchemy database URL")
    log_level: str = Field("INFO", description="Level name for the jobtrack logger")
    worker: WorkerConfig = Field(default_factory=WorkerConfig)


def _default_config_paths() -> list[Path]:
    """Return paths to check for jobtrack.toml (first existing wins)."""
    paths: list[Path] = []
    if os.environ.get("JOBTRACK_CONFIG"):
        paths.append(Path(os.environ["JOBTRACK_CONFIG"]))
    paths.append(Path.cwd() / "jobtrack.toml")
    return paths


def load_config(path: Path | None = None) -> JobtrackConfig:
    """Load config from ``path`` or the default locations, then apply env overrides.

    Unreadable or invalid files are logged and skipped.
    """
    data: dict[str, Any] = {}
    for candidate in [path] if path is not None else _default_config_paths():
        if not candidate.is_file():
            continue
        try:
            with open(candidate, "rb") as f:
                data = tomllib.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring config file %s: %s", candidate, exc)
            continue
        break

    if os.environ.get("JOBTRACK_STORE_URL"):
        data["store_url"] = os.environ["JOBTRACK_STORE_URL"]
    if os.environ.get("JOBTRACK_LOG_LEVEL"):
        data["log_level"] = os.environ["JOBTRACK_LOG_LEVEL"]

    try:
        return JobtrackConfig.model_validate(data)
    except ValidationError as exc:
        logger.warning("Invalid jobtrack config, using defaults: %s", exc)
        return JobtrackConfig()


def create_store(config: JobtrackConfig):
    """Build the job store named by ``config.store_url``."""
    if config.store_url == MEMORY_STORE_URL:
        from jobtrack.storage.memory import InMemoryJobStore

        return InMemoryJobStore()

    from jobtrack.storage.sql import SQLJobStore

    return SQLJobStore(config.store_url)
