from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from app.core.config import settings

_METERING_CONFIG_CACHE: dict[str, Any] | None = None
_DEFAULT_METERING_CONFIG_PATH = Path(__file__).resolve().parents[3] / "config" / "metering.yaml"


def metering_config_path() -> Path:
    if settings.metering_config_path:
        return Path(settings.metering_config_path)
    return _DEFAULT_METERING_CONFIG_PATH


def load_metering_config(path: Path) -> dict[str, Any]:
    """Parse a metering YAML file; raises RuntimeError on a missing or malformed file."""
    if not path.exists():
        raise RuntimeError(
            f"Metering config not found at '{path}'. "
            "Expected file: config/metering.yaml"
        )

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RuntimeError(f"Failed to read metering config '{path}': {exc}") from exc

    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise RuntimeError(f"Invalid YAML in metering config '{path}': {exc}") from exc

    if not isinstance(parsed, dict):
        raise RuntimeError(f"Invalid metering config '{path}': expected a top-level mapping.")

    for section in ("tiers", "providers", "chains"):
        if not isinstance(parsed.get(section), dict):
            raise RuntimeError(f"Invalid metering config '{path}': missing '{section}' mapping.")
    return parsed


def get_metering_config() -> dict[str, Any]:
    """Load the repo-level metering config (or METERING_CONFIG_PATH) and cache it."""
    global _METERING_CONFIG_CACHE

    if _METERING_CONFIG_CACHE is not None:
        return _METERING_CONFIG_CACHE

    _METERING_CONFIG_CACHE = load_metering_config(metering_config_path())
    return _METERING_CONFIG_CACHE

