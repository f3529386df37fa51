import pytest

from renamer.config_utils import (
    DEFAULT_MODEL,
    build_ollama_options,
    get_model_config,
    load_settings,
    resolve_config_path,
    resolve_stage_model,
)
from renamer.errors import ConfigError


def test_missing_config_file_uses_defaults(tmp_path):
    settings = load_settings(tmp_path / "absent.yaml")

    assert settings.processing.parallel_files == 3
    assert settings.processing.enable_validation is True
    assert settings.processing.validation_retry_count == 3
    assert settings.models["default"] == DEFAULT_MODEL
    assert "note" in settings.categories


def test_load_settings_reads_yaml(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
models:
  default:
    name: llava:13b
    context_window: 4096
  validation: qwen3:4b
processing:
  parallel_files: 5
  enable_validation: false
categories:
  Invoice: Bills
  Note: Everything else
folders: null
""",
        encoding="utf-8",
    )

    settings = load_settings(config_path)

    assert settings.processing.parallel_files == 5
    assert settings.processing.enable_validation is False
    assert set(settings.categories) == {"invoice", "note"}
    assert settings.folders.enabled is False
    assert resolve_stage_model(settings.models, "naming") == {
        "name": "llava:13b",
        "context_window": 4096,
    }
    assert resolve_stage_model(settings.models, "validation")["name"] == "qwen3:4b"


def test_invalid_values_raise_config_error(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("processing:\n  parallel_files: 0\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings(config_path)


def test_unparseable_yaml_raises_config_error(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("processing: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings(config_path)


def test_config_path_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("RENAMER_CONFIG", str(tmp_path / "custom.yaml"))
    assert resolve_config_path() == tmp_path / "custom.yaml"
    assert resolve_config_path("explicit.yaml").name == "explicit.yaml"


def test_validation_falls_back_to_regeneration_model():
    models = {"default": "base", "regeneration": "big"}
    assert resolve_stage_model(models, "validation")["name"] == "big"
    assert resolve_stage_model(models, "categorization")["name"] == "base"


def test_unknown_stage_and_model_raise_key_error():
    with pytest.raises(KeyError):
        resolve_stage_model({"default": "base"}, "summarize")
    with pytest.raises(KeyError):
        get_model_config({"default": "base"}, "missing")


def test_build_ollama_options_sets_context_window():
    assert build_ollama_options({"name": "m", "context_window": 8192}) == {
        "num_ctx": 8192
    }
    assert build_ollama_options({"name": "m", "context_window": None}) == {}
