"""Configuration helpers for the AI Image Studio project."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

DEFAULT_IMAGE_MODEL = "doubao-seedream-4-0-250828"
HISTORY_KEY = "ai-image-history"


@dataclass(slots=True)
class AppConfig:
    """Centralized application configuration."""

    assets_dir: Path = Path("assets")
    data_dir: Path = Path("data")
    output_dir: Path = Path("outputs")
    log_dir: Path = Path("logs")
    history_key: str = HISTORY_KEY
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    image_model: str = DEFAULT_IMAGE_MODEL
    generation_timeout: Optional[float] = 120.0
    preview_delay: float = 2.0
    server_port: Optional[int] = None
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
        os.environ[key.strip()] = value.strip()


def _first_env(*names: str) -> Optional[str]:
    """Return the first non-empty environment variable among ``names``."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def _parse_timeout(raw: Optional[str], default: Optional[float]) -> Optional[float]:
    """Interpret GENERATION_TIMEOUT; zero or negative disables the deadline."""
    if raw in (None, ""):
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else None


def _parse_float(raw: Optional[str], default: float) -> float:
    if raw in (None, ""):
        return default
    try:
        return max(0.0, float(raw))
    except ValueError:
        return default


def _parse_port(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Return an AppConfig instance with environment-aware settings."""
    env_path = Path(config_path) if config_path else Path(".env")
    _load_env_file(env_path)

    defaults = AppConfig()
    data_dir = Path(os.getenv("DATA_DIR", str(defaults.data_dir))).expanduser()
    output_dir = Path(os.getenv("OUTPUT_DIR", str(defaults.output_dir))).expanduser()
    log_dir = Path(os.getenv("LOG_DIR", str(defaults.log_dir))).expanduser()

    api_key = _first_env("IMAGE_API_KEY", "ARK_API_KEY", "OPENAI_API_KEY")
    base_url = _first_env("IMAGE_BASE_URL", "ARK_BASE_URL", "OPENAI_BASE_URL")
    image_model = os.getenv("IMAGE_MODEL") or DEFAULT_IMAGE_MODEL

    metadata: dict[str, Any] = {}
    if base_url:
        metadata["provider_host"] = base_url.split("//", 1)[-1].split("/", 1)[0]
    metadata["service_mode"] = "remote" if api_key else "preview"

    return AppConfig(
        data_dir=data_dir,
        output_dir=output_dir,
        log_dir=log_dir,
        api_key=api_key,
        base_url=base_url,
        image_model=image_model,
        generation_timeout=_parse_timeout(
            os.getenv("GENERATION_TIMEOUT"), defaults.generation_timeout
        ),
        preview_delay=_parse_float(os.getenv("PREVIEW_DELAY"), defaults.preview_delay),
        server_port=_parse_port(os.getenv("SERVER_PORT")),
        metadata=metadata,
    )
