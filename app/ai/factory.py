import logging
from typing import Any, Mapping

from app.ai.config import load_provider_configs
from app.ai.types import ProviderAdapter
from app.core.config import Settings

from app.ai.providers import claude_provider, cohere_provider, gemini_provider, openai_provider

logger = logging.getLogger(__name__)

_BUILDERS = {
    "openai": openai_provider.from_config,
    "claude": claude_provider.from_config,
    "gemini": gemini_provider.from_config,
    "cohere": cohere_provider.from_config,
}


def build_adapters(raw_providers: Mapping[str, Any], settings: Settings) -> dict[str, ProviderAdapter]:
    adapters: dict[str, ProviderAdapter] = {}
    for cfg in load_provider_configs(raw_providers, settings):
        adapter = _BUILDERS[cfg.kind](cfg)
        adapters[cfg.name] = adapter
        if not adapter.healthy:
            logger.warning("provider_unconfigured name=%s kind=%s", cfg.name, cfg.kind)
    return adapters
