"""Configuration loading tests."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from config.settings import DEFAULT_STATUS_MILESTONES, load_config
from panorama.utils.logging import resolve_level

ENV_NAMES = (
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "GEMINI_BASE_URL",
    "GEMINI_IMAGE_MODEL",
    "GEMINI_TEXT2IMG_MODEL",
    "GEMINI_TIMEOUT",
    "PANORAMA_STORAGE_DIR",
    "PANORAMA_OUTPUT_DIR",
    "PANORAMA_LOG_DIR",
    "PANORAMA_DEFAULT_PROMPT",
    "PANORAMA_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_env_file(tmp_path):
    config = load_config(str(tmp_path / "missing.env"))

    assert config.gemini_api_key is None
    assert config.gemini_base_url == "https://generativelanguage.googleapis.com/v1beta"
    assert config.text2img_model == config.image_model
    assert config.request_timeout == 120.0
    assert config.storage_dir == Path("storage")
    assert config.status_milestones == DEFAULT_STATUS_MILESTONES
    assert "api_key_source" not in config.metadata


def test_env_file_values_are_applied(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "\n".join(
            [
                "# local settings",
                'GEMINI_API_KEY="file-key"',
                "GEMINI_BASE_URL=https://proxy.test/v1beta/",
                "GEMINI_IMAGE_MODEL=edit-model",
                "GEMINI_TIMEOUT=45",
                f"PANORAMA_STORAGE_DIR={tmp_path / 'state'}",
                "not a setting",
            ]
        ),
        encoding="utf-8",
    )
    for name in ENV_NAMES:
        monkeypatch.setenv(name, "")

    config = load_config(str(env_file))

    assert config.gemini_api_key == "file-key"
    assert config.metadata["api_key_source"] == "GEMINI_API_KEY"
    assert config.metadata["env_file"] == str(env_file)
    assert config.gemini_base_url == "https://proxy.test/v1beta"
    assert config.image_model == "edit-model"
    assert config.text2img_model == "edit-model"
    assert config.request_timeout == 45.0
    assert config.storage_dir == tmp_path / "state"


def test_google_api_key_fallback(tmp_path, monkeypatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "google-key")

    config = load_config(str(tmp_path / "missing.env"))

    assert config.gemini_api_key == "google-key"
    assert config.metadata["api_key_source"] == "GOOGLE_API_KEY"


@pytest.mark.parametrize("raw", ["abc", "-5", "0"])
def test_invalid_timeout_falls_back(tmp_path, monkeypatch, raw):
    monkeypatch.setenv("GEMINI_TIMEOUT", raw)
    assert load_config(str(tmp_path / "missing.env")).request_timeout == 120.0


def test_log_level_from_environment(tmp_path, monkeypatch):
    assert load_config(str(tmp_path / "missing.env")).log_level == "INFO"

    monkeypatch.setenv("PANORAMA_LOG_LEVEL", "debug")

    config = load_config(str(tmp_path / "missing.env"))
    assert config.log_level == "DEBUG"
    assert resolve_level(config.log_level) == logging.DEBUG


@pytest.mark.parametrize("name, level", [("warning", logging.WARNING), ("ERROR", logging.ERROR), ("chatty", logging.INFO)])
def test_resolve_level(name, level):
    assert resolve_level(name) == level
