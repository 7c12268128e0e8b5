from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from app.core.config import Settings

SUPPORTED_KINDS = {"openai", "claude", "gemini", "cohere"}


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    kind: str
    model: str
    api_key: str | None
    base_url: str | None
    timeout_s: float


def _looks_like_placeholder(value: str) -> bool:
    lower = value.strip().lower()
    return lower.startswith("your_") or lower.startswith("replace_") or lower in {"changeme", "todo"}


def _credentials_for(kind: str, settings: Settings) -> tuple[str | None, str | None]:
    if kind == "openai":
        return settings.openai_api_key, settings.openai_base_url
    if kind == "claude":
        return settings.anthropic_api_key, settings.anthropic_base_url
    if kind == "gemini":
        return settings.gemini_api_key, settings.gemini_base_url
    return settings.cohere_api_key, settings.cohere_base_url


def load_provider_configs(raw_providers: Mapping[str, Any], settings: Settings) -> list[ProviderConfig]:
    configs: list[ProviderConfig] = []
    for name, raw in raw_providers.items():
        data = raw or {}
        kind = str(data.get("kind", "")).strip().lower()
        if kind not in SUPPORTED_KINDS:
            raise ValueError(f"Unsupported provider kind '{kind}' for provider '{name}'")
        api_key, base_url = _credentials_for(kind, settings)
        key = (api_key or "").strip()
        if not key or _looks_like_placeholder(key):
            key = ""
        configs.append(
            ProviderConfig(
                name=str(name),
                kind=kind,
                model=str(data.get("model", "")).strip(),
                api_key=key or None,
                base_url=base_url,
                timeout_s=float(data.get("timeout_s", settings.provider_timeout_s)),
            )
        )
    return configs
