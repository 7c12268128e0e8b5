from __future__ import annotations

import importlib.util
import sys
from pathlib import Path
from types import ModuleType


def _load_settings_module() -> ModuleType:
    """Load the env-backed Settings from app/core/config.py, which this package shadows."""
    settings_path = Path(__file__).resolve().parent.parent / "config.py"
    module_name = "app.core._env_settings"

    cached = sys.modules.get(module_name)
    if cached is not None:
        return cached

    spec = importlib.util.spec_from_file_location(module_name, settings_path)
    if spec is None or spec.loader is None:
        raise RuntimeError(f"Unable to load settings module at '{settings_path}'.")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


_env_settings = _load_settings_module()
Settings = _env_settings.Settings
settings = _env_settings.settings

from .metering import get_metering_config  # noqa: E402

__all__ = ["Settings", "settings", "get_metering_config"]
