"""Configuration helpers for the Panorama Studio project."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

DEFAULT_STATUS_MILESTONES: tuple[tuple[float, str], ...] = (
    (0.0, "Initializing the image model..."),
    (1.5, "Analyzing image and prompt..."),
    (4.0, "Extending the scene to 16:9..."),
)


@dataclass(slots=True)
class AppConfig:
    """Centralized application configuration."""

    gemini_api_key: Optional[str] = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    image_model: str = "gemini-2.5-flash-image-preview"
    text2img_model: str = "gemini-2.5-flash-image-preview"
    request_timeout: float = 120.0
    decode_timeout: float = 30.0
    storage_dir: Path = Path("storage")
    output_dir: Path = Path("outputs")
    log_dir: Path = Path("logs")
    log_level: str = "INFO"
    history_key: str = "panorama_history"
    max_exports: int = 50
    default_prompt: str = "a beautiful sunny day with fluffy clouds"
    status_milestones: tuple[tuple[float, str], ...] = DEFAULT_STATUS_MILESTONES
    metadata: dict[str, Any] = field(default_factory=dict)


def _load_env_file(path: Path) -> None:
    """Populate environment variables from a simple KEY=VALUE .env file."""
    if not path.exists():
        return

    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ[key.strip()] = value.strip().strip("\"'")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Return an AppConfig instance with environment-aware settings."""
    env_path = Path(config_path) if config_path else Path(".env")
    _load_env_file(env_path)

    defaults = AppConfig()
    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    image_model = os.getenv("GEMINI_IMAGE_MODEL") or defaults.image_model
    text2img_model = os.getenv("GEMINI_TEXT2IMG_MODEL") or image_model

    storage_dir = Path(os.getenv("PANORAMA_STORAGE_DIR", str(defaults.storage_dir))).expanduser()
    output_dir = Path(os.getenv("PANORAMA_OUTPUT_DIR", str(defaults.output_dir))).expanduser()
    log_dir = Path(os.getenv("PANORAMA_LOG_DIR", str(defaults.log_dir))).expanduser()

    metadata: dict[str, Any] = {"env_file": str(env_path)}
    if api_key:
        metadata["api_key_source"] = "GEMINI_API_KEY" if os.getenv("GEMINI_API_KEY") else "GOOGLE_API_KEY"

    return AppConfig(
        gemini_api_key=api_key or None,
        gemini_base_url=(os.getenv("GEMINI_BASE_URL") or defaults.gemini_base_url).rstrip("/"),
        image_model=image_model,
        text2img_model=text2img_model,
        request_timeout=_env_float("GEMINI_TIMEOUT", defaults.request_timeout),
        storage_dir=storage_dir,
        output_dir=output_dir,
        log_dir=log_dir,
        log_level=(os.getenv("PANORAMA_LOG_LEVEL") or defaults.log_level).upper(),
        default_prompt=os.getenv("PANORAMA_DEFAULT_PROMPT") or defaults.default_prompt,
        metadata=metadata,
    )
