from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Any, Mapping

from app.metering.models import OPERATION_TYPES, CostEstimate, ProviderOperation

DEFAULT_KB_PER_PAGE = 50
DEFAULT_BYTES_PER_TOKEN = 4
DEFAULT_COMPLETION_TOKENS: dict[str, int] = {
    "analyze": 2000,
    "generate_cover_letter": 1000,
}


@dataclass(frozen=True)
class ProviderPricing:
    provider: str
    input_cost_per_1k: float = 0.0
    output_cost_per_1k: float = 0.0
    page_cost: float = 0.0


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def pricing_from_config(
    raw_providers: Mapping[str, Any], *, apply_env_overrides: bool = True
) -> dict[str, ProviderPricing]:
    pricing: dict[str, ProviderPricing] = {}
    for name, raw in raw_providers.items():
        data = raw or {}
        input_cost = float(data.get("input_cost", 0.0))
        output_cost = float(data.get("output_cost", 0.0))
        page_cost = float(data.get("page_cost", 0.0))
        if apply_env_overrides:
            prefix = f"PROVIDER_{str(name).upper().replace('-', '_')}"
            input_cost = _env_float(f"{prefix}_INPUT_COST", input_cost)
            output_cost = _env_float(f"{prefix}_OUTPUT_COST", output_cost)
            page_cost = _env_float(f"{prefix}_PAGE_COST", page_cost)
        pricing[str(name)] = ProviderPricing(
            provider=str(name),
            input_cost_per_1k=input_cost,
            output_cost_per_1k=output_cost,
            page_cost=page_cost,
        )
    return pricing


class CostEstimator:
    """Prices provider calls from per-provider unit costs.

    `estimate` runs before a call using the request size; `finalize` reprices
    with the usage the provider actually reported.
    """

    def __init__(
        self,
        pricing: Mapping[str, ProviderPricing],
        *,
        kb_per_page: int = DEFAULT_KB_PER_PAGE,
        bytes_per_token: int = DEFAULT_BYTES_PER_TOKEN,
        completion_tokens: Mapping[str, int] | None = None,
    ):
        self._pricing = dict(pricing)
        self._kb_per_page = max(1, int(kb_per_page))
        self._bytes_per_token = max(1, int(bytes_per_token))
        self._completion_tokens = dict(DEFAULT_COMPLETION_TOKENS)
        if completion_tokens:
            self._completion_tokens.update({k: int(v) for k, v in completion_tokens.items()})

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "CostEstimator":
        estimation = config.get("estimation") or {}
        completion = estimation.get("expected_completion_tokens") or {}
        return cls(
            pricing_from_config(config.get("providers") or {}),
            kb_per_page=int(estimation.get("kb_per_page", DEFAULT_KB_PER_PAGE)),
            bytes_per_token=int(estimation.get("bytes_per_token", DEFAULT_BYTES_PER_TOKEN)),
            completion_tokens={
                "analyze": int(completion.get("analysis", DEFAULT_COMPLETION_TOKENS["analyze"])),
                "generate_cover_letter": int(
                    completion.get("cover_letter", DEFAULT_COMPLETION_TOKENS["generate_cover_letter"])
                ),
            },
        )

    def pricing_for(self, provider: str) -> ProviderPricing:
        return self._pricing.get(provider, ProviderPricing(provider=provider))

    def pages_for(self, input_size_bytes: int) -> int:
        size_kb = max(0, input_size_bytes) / 1024
        return max(1, math.ceil(size_kb / self._kb_per_page))

    def tokens_for(self, input_size_bytes: int) -> int:
        return math.ceil(max(0, input_size_bytes) / self._bytes_per_token)

    def completion_ceiling(self, operation: ProviderOperation) -> int:
        return self._completion_tokens.get(operation, 0)

    def estimate(self, operation: ProviderOperation, input_size_bytes: int, provider: str) -> CostEstimate:
        pricing = self.pricing_for(provider)
        if OPERATION_TYPES[operation] == "parsing":
            pages = self.pages_for(input_size_bytes)
            return CostEstimate(
                provider=provider,
                operation=operation,
                units=pages,
                unit_cost=pricing.page_cost,
                total=pages * pricing.page_cost,
            )

        prompt_tokens = self.tokens_for(input_size_bytes)
        completion_tokens = self.completion_ceiling(operation)
        units = prompt_tokens + completion_tokens
        total = self._token_cost(pricing, prompt_tokens, completion_tokens)
        return CostEstimate(
            provider=provider,
            operation=operation,
            units=units,
            unit_cost=(total / units) if units else 0.0,
            total=total,
        )

    def finalize(
        self,
        estimate: CostEstimate,
        *,
        tokens_in: int = 0,
        tokens_out: int = 0,
        pages: int = 0,
    ) -> float:
        pricing = self.pricing_for(estimate.provider)
        if OPERATION_TYPES[estimate.operation] == "parsing":
            observed_pages = pages if pages > 0 else estimate.units
            return observed_pages * pricing.page_cost
        return self._token_cost(pricing, max(0, tokens_in), max(0, tokens_out))

    @staticmethod
    def _token_cost(pricing: ProviderPricing, tokens_in: int, tokens_out: int) -> float:
        return (tokens_in / 1000) * pricing.input_cost_per_1k + (tokens_out / 1000) * pricing.output_cost_per_1k
