"""
Engine settings.

Settings are read from a YAML file (config/engine.yaml by default) and may
be overridden by environment variables:

    AMR_MAX_WORKERS              worker threads for row processing
    AMR_COMPLETENESS_THRESHOLD   batch completeness warning threshold (%)
    AMR_MIN_COLLECTION_DATE      earliest plausible collection date
    AMR_CHECKPOINT_DIR           directory for pause/resume checkpoints
"""

import os
from datetime import date
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from amr_ingest.core.errors import ConfigurationError
from amr_ingest.core.models import STANDARD_FIELDS

DEFAULT_SETTINGS_PATH = Path("config/engine.yaml")

ENV_OVERRIDES = {
    "AMR_MAX_WORKERS": "max_workers",
    "AMR_COMPLETENESS_THRESHOLD": "completeness_threshold",
    "AMR_MIN_COLLECTION_DATE": "min_collection_date",
    "AMR_CHECKPOINT_DIR": "checkpoint_dir",
}


class EngineSettings(BaseModel):
    """
    Attributes:
        max_workers: Worker threads for stages 2-5
        required_fields: Fields a template must map (unless it overrides)
        check_weights: Quality check name to weight
        completeness_threshold: Batch completeness % below which a warning is raised
        min_collection_date: Collection dates before this are inconsistent
        default_breakpoint_standard: Standard for raw values when none is declared
        default_breakpoint_version: Version for raw values when none is declared
        dayfirst: Parse ambiguous dates as day/month/year
        checkpoint_dir: Directory for JSON checkpoints (None keeps them in memory)
        target_table: Result table written by commits
        reference_path: Reference data YAML
        synonyms_path: Column synonym YAML
        templates_dir: Directory of template YAML files
    """

    max_workers: int = Field(4, ge=1, le=64)
    required_fields: list[str] = Field(
        default_factory=lambda: ["organism", "specimen_type", "collection_date"]
    )
    check_weights: dict[str, float] = Field(default_factory=dict)
    completeness_threshold: float = Field(80.0, ge=0.0, le=100.0)
    min_collection_date: date | None = date(1990, 1, 1)
    default_breakpoint_standard: str | None = None
    default_breakpoint_version: str | None = None
    dayfirst: bool = False
    checkpoint_dir: Path | None = None
    target_table: str = "ast_result"
    reference_path: Path = Path("config/reference.yaml")
    synonyms_path: Path = Path("config/synonyms.yaml")
    templates_dir: Path = Path("config/templates")

    @field_validator("required_fields")
    @classmethod
    def check_required_fields(cls, v: list[str]) -> list[str]:
        unknown = [name for name in v if name not in STANDARD_FIELDS]
        if unknown:
            raise ValueError(f"Unknown required fields: {unknown}")
        return v

    @field_validator("check_weights")
    @classmethod
    def check_weights_non_negative(cls, v: dict[str, float]) -> dict[str, float]:
        for check, weight in v.items():
            if weight < 0:
                raise ValueError(f"Weight of check '{check}' must be non-negative")
        return v


def load_settings(path: str | Path | None = None) -> EngineSettings:
    """
    Load settings from YAML, then apply environment overrides.

    A missing file at the default location yields default settings; an
    explicitly given path must exist.

    Raises:
        ConfigurationError: If the file or an override is invalid
    """
    config_path = Path(path) if path is not None else DEFAULT_SETTINGS_PATH
    data: dict = {}
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            try:
                loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping")
        data.update(loaded.get("engine", loaded))
    elif path is not None:
        raise ConfigurationError(f"Settings file not found: {config_path}")

    for env_var, setting in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            data[setting] = value

    try:
        return EngineSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid engine settings: {e}") from e
