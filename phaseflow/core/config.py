"""Configuration loader for phaseflow.

Loads config from a YAML cascade: config/default.yaml is always loaded,
then environment-specific overrides, then environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from phaseflow.core.exceptions import ConfigError


# ---------------------------------------------------------------------------
# Config schema
# ---------------------------------------------------------------------------

class EngineConfig(BaseModel):
    max_retries: int = Field(default=2, ge=0)
    freshness_window_seconds: int = Field(default=60, ge=1)
    max_parallel_workers: int = Field(default=2, ge=1)
    max_escalation_rounds: int = Field(default=3, ge=1)


class ClassifierConfig(BaseModel):
    subtask_max_depth: int = Field(default=2, ge=1)
    cache_size: int = Field(default=512, ge=0)


class StoreConfig(BaseModel):
    state_dir: str = ".phaseflow/state"
    archive_dir: str = ".phaseflow/archive"
    archive_on_complete: bool = True


class WorkersConfig(BaseModel):
    timeout_seconds: int = 600
    commands: dict[str, str] = Field(default_factory=dict)
    driver: Optional[str] = None


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class AppConfig(BaseModel):
    engine: EngineConfig = Field(default_factory=EngineConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    workers: WorkersConfig = Field(default_factory=WorkersConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return data if isinstance(data, dict) else {}


def default_config_dir() -> Path:
    return Path(__file__).parent.parent.parent / "config"


def load_config(
    config_dir: Optional[Path] = None,
    env: Optional[str] = None,
) -> AppConfig:
    """Load application config from YAML cascade.

    Order: default.yaml -> {env}.yaml -> env vars (PHASEFLOW_STATE_DIR, ...)
    """
    if config_dir is None:
        config_dir = default_config_dir()

    merged = _load_yaml(config_dir / "default.yaml")

    if env:
        overlay = _load_yaml(config_dir / f"{env}.yaml")
        merged = _deep_merge(merged, overlay)

    state_dir = os.getenv("PHASEFLOW_STATE_DIR")
    if state_dir:
        merged.setdefault("store", {})
        merged["store"]["state_dir"] = state_dir

    max_retries = os.getenv("PHASEFLOW_MAX_RETRIES")
    if max_retries:
        try:
            merged.setdefault("engine", {})
            merged["engine"]["max_retries"] = int(max_retries)
        except ValueError as e:
            raise ConfigError(f"PHASEFLOW_MAX_RETRIES must be an integer, got '{max_retries}'") from e

    try:
        return AppConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
