"""Project configuration for identity fetching and manifest file locations."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from clawup.identity.cache import DEFAULT_FETCH_TIMEOUT
from clawup.manifest.models import MANIFEST_FILE

logger = logging.getLogger(__name__)

CONFIG_DIR = ".clawup"
CONFIG_FILE = "config.json"


def _default_cache_dir() -> Path:
    return Path.home() / ".clawup" / "identity-cache"


@dataclass
class ClawupConfig:
    cache_dir: Path = field(default_factory=_default_cache_dir)
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    max_workers: int = 4
    manifest_file: str = MANIFEST_FILE
    env_example_file: str = ".env.example"
    env_file: str = ".env"


def config_path(project_root: Path) -> Path:
    return project_root / CONFIG_DIR / CONFIG_FILE


def load_clawup_config(path: Path | None) -> ClawupConfig:
    """Load config from .clawup/config.json with env var overrides."""
    config = ClawupConfig()

    if path and path.exists():
        try:
            text = path.read_text()
            if text.strip():
                data = json.loads(text)
                _apply_identity(config, data.get("identity", {}))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable config {path}: {e}")

    # Env var overrides
    cache_dir = os.environ.get("CLAWUP_CACHE_DIR")
    if cache_dir:
        config.cache_dir = Path(cache_dir).expanduser()
    timeout = os.environ.get("CLAWUP_FETCH_TIMEOUT")
    if timeout:
        try:
            config.fetch_timeout = float(timeout)
        except ValueError:
            logger.warning(f"CLAWUP_FETCH_TIMEOUT is not a number: {timeout!r}")
    workers = os.environ.get("CLAWUP_MAX_WORKERS")
    if workers:
        try:
            config.max_workers = max(1, int(workers))
        except ValueError:
            logger.warning(f"CLAWUP_MAX_WORKERS is not an integer: {workers!r}")

    return config


def _apply_identity(cfg: ClawupConfig, data: dict) -> None:
    if "cache_dir" in data:
        cfg.cache_dir = Path(data["cache_dir"]).expanduser()
    if "fetch_timeout" in data:
        cfg.fetch_timeout = float(data["fetch_timeout"])
    if "max_workers" in data:
        cfg.max_workers = max(1, int(data["max_workers"]))
    if "manifest_file" in data:
        cfg.manifest_file = data["manifest_file"]
    if "env_example_file" in data:
        cfg.env_example_file = data["env_example_file"]
    if "env_file" in data:
        cfg.env_file = data["env_file"]
