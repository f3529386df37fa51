"""Helpers for working with the project configuration file."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from renamer.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("config.yaml")
CONFIG_ENV_VAR = "RENAMER_CONFIG"

DEFAULT_MODEL = "qwen3-vl:8b"
DEFAULT_MODEL_KEY = "default"
PIPELINE_STAGES = ("categorization", "naming", "regeneration", "validation")

DEFAULT_CATEGORIES: dict[str, str] = {
    "invoice": "Bills, invoices and payment confirmations.",
    "report": "Reports, analyses and formal write-ups.",
    "screenshot": "Screen captures of applications or web pages.",
    "photo": "Photographs of people, places or objects.",
    "note": "General notes and anything that fits no other category.",
}


class OllamaSettings(BaseModel):
    host: str | None = None
    timeout: float = Field(default=120.0, gt=0)


class ProcessingSettings(BaseModel):
    """Snapshot of the processing knobs read when a batch starts."""

    parallel_files: int = Field(default=3, ge=1)
    enable_validation: bool = True
    validation_retry_count: int = Field(default=3, ge=1)
    max_content_chars: int = Field(default=3000, ge=0)
    fallback_category: str = "note"


class StorageSettings(BaseModel):
    database_path: Path = Path("data/renamer.db")
    retention_days: int = Field(default=30, ge=1)


class FolderSettings(BaseModel):
    enabled: bool = False
    create_if_missing: bool = True
    rules: dict[str, str] = Field(default_factory=dict)


class Settings(BaseModel):
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)
    models: dict[str, Any] = Field(
        default_factory=lambda: {DEFAULT_MODEL_KEY: DEFAULT_MODEL}
    )
    processing: ProcessingSettings = Field(default_factory=ProcessingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    folders: FolderSettings = Field(default_factory=FolderSettings)
    categories: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORIES)
    )

    @field_validator("models")
    @classmethod
    def _require_default_model(cls, value: dict[str, Any]) -> dict[str, Any]:
        if not value.get(DEFAULT_MODEL_KEY):
            value = {**value, DEFAULT_MODEL_KEY: DEFAULT_MODEL}
        return value

    @field_validator("categories")
    @classmethod
    def _lowercase_categories(cls, value: dict[str, str]) -> dict[str, str]:
        if not value:
            raise ValueError("At least one category must be configured.")
        return {key.strip().lower(): text for key, text in value.items()}


def resolve_config_path(path: Path | str | None = None) -> Path:
    """Return the explicit path, the RENAMER_CONFIG path or ``config.yaml``."""
    if path is not None:
        return Path(path)
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return CONFIG_PATH


def load_config(path: Path | str = CONFIG_PATH) -> dict[str, Any]:
    """Load the YAML configuration."""
    with Path(path).open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def load_settings(path: Path | str | None = None) -> Settings:
    """Load and validate the configuration, using defaults for a missing file."""
    config_path = resolve_config_path(path)
    if not config_path.exists():
        logger.info("No configuration at %s; using defaults", config_path)
        return Settings()

    try:
        raw = load_config(config_path)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse {config_path}: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")

    # Keys present with a null value should mean "use the default".
    cleaned = {key: value for key, value in raw.items() if value is not None}
    try:
        settings = Settings.model_validate(cleaned)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {config_path}: {exc}") from exc
    logger.debug("Loaded configuration from %s", config_path)
    return settings


def _normalize_model_entry(entry: Any) -> dict[str, Any]:
    """Return a normalized model entry with name and context window."""
    if isinstance(entry, str):
        return {"name": entry, "context_window": None}

    if isinstance(entry, Mapping):
        if "name" not in entry:
            raise KeyError("Model configuration entries must include a 'name'.")
        normalized = dict(entry)
        normalized.setdefault("context_window", None)
        return normalized

    raise TypeError("Model configuration entries must be strings or mappings.")


def get_model_config(models_section: Mapping[str, Any], key: str) -> dict[str, Any]:
    """Fetch and normalize a model's configuration."""
    if key not in models_section:
        raise KeyError(f"Model '{key}' not found in configuration.")

    entry = models_section[key]
    return _normalize_model_entry(entry)


def resolve_stage_model(
    models_section: Mapping[str, Any], stage: str
) -> dict[str, Any]:
    """Return the model configured for ``stage``, falling back to the default."""
    if stage not in PIPELINE_STAGES:
        raise KeyError(f"Unknown pipeline stage '{stage}'.")
    if models_section.get(stage):
        return get_model_config(models_section, stage)
    if stage == "validation" and models_section.get("regeneration"):
        return get_model_config(models_section, "regeneration")
    return get_model_config(models_section, DEFAULT_MODEL_KEY)


def build_ollama_options(model_config: Mapping[str, Any]) -> dict[str, Any]:
    """Return Ollama options derived from the model configuration."""
    options: dict[str, Any] = {}
    context_window = model_config.get("context_window")
    if context_window:
        options["num_ctx"] = context_window
    return options
