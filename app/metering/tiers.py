from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Mapping

from app.metering.errors import OperationType

UNLIMITED = -1
DEFAULT_TIER = "free"

_TIER_ALIASES = {
    "careerpro": "career-pro",
    "career_pro": "career-pro",
    "eliteexecutive": "elite",
    "elite-executive": "elite",
    "elite_executive": "elite",
}


@dataclass(frozen=True)
class TierDefinition:
    tier_id: str
    parsing_limit_per_period: int
    ai_call_limit_per_period: int
    max_tokens_per_request: int
    cost_ceiling: float
    features: tuple[str, ...] = field(default_factory=tuple)

    def limit_for(self, op_type: OperationType) -> int:
        if op_type == "parsing":
            return self.parsing_limit_per_period
        return self.ai_call_limit_per_period

    def as_dict(self) -> dict[str, Any]:
        return {
            "tier_id": self.tier_id,
            "parsing_limit_per_period": self.parsing_limit_per_period,
            "ai_call_limit_per_period": self.ai_call_limit_per_period,
            "max_tokens_per_request": self.max_tokens_per_request,
            "cost_ceiling": self.cost_ceiling,
            "features": list(self.features),
        }


def normalize_tier_id(tier_id: str | None) -> str:
    value = (tier_id or "").strip()
    if not value:
        return DEFAULT_TIER
    lowered = value.lower()
    return _TIER_ALIASES.get(lowered, lowered)


def _env_key(tier_id: str) -> str:
    return tier_id.upper().replace("-", "_")


def _override_int(tier_id: str, suffix: str, default: int) -> int:
    raw = os.getenv(f"TIER_{_env_key(tier_id)}_{suffix}")
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _override_float(tier_id: str, suffix: str, default: float) -> float:
    raw = os.getenv(f"TIER_{_env_key(tier_id)}_{suffix}")
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class TierCatalog:
    """Read-only table of subscription tiers.

    Lookups never fail: any id that is not a known tier resolves to the free
    tier so an unrecognised plan can never grant more than the minimum.
    """

    def __init__(self, tiers: Mapping[str, TierDefinition]):
        if DEFAULT_TIER not in tiers:
            raise ValueError(f"Tier catalog must define the '{DEFAULT_TIER}' tier.")
        self._tiers = dict(tiers)

    @classmethod
    def from_config(cls, raw_tiers: Mapping[str, Any], *, apply_env_overrides: bool = True) -> "TierCatalog":
        tiers: dict[str, TierDefinition] = {}
        for raw_id, raw in raw_tiers.items():
            tier_id = normalize_tier_id(str(raw_id))
            data = raw or {}
            parsing_limit = int(data.get("parsing_limit", 0))
            ai_limit = int(data.get("ai_call_limit", 0))
            max_tokens = int(data.get("max_tokens", 4000))
            cost_ceiling = float(data.get("cost_ceiling", 0.0))
            if apply_env_overrides:
                parsing_limit = _override_int(tier_id, "PARSING_LIMIT", parsing_limit)
                ai_limit = _override_int(tier_id, "AI_LIMIT", ai_limit)
                max_tokens = _override_int(tier_id, "MAX_TOKENS", max_tokens)
                cost_ceiling = _override_float(tier_id, "COST_CEILING", cost_ceiling)
            tiers[tier_id] = TierDefinition(
                tier_id=tier_id,
                parsing_limit_per_period=parsing_limit,
                ai_call_limit_per_period=ai_limit,
                max_tokens_per_request=max_tokens,
                cost_ceiling=cost_ceiling,
                features=tuple(str(item) for item in data.get("features") or []),
            )
        return cls(tiers)

    def limits_for(self, tier_id: str | None) -> TierDefinition:
        return self._tiers.get(normalize_tier_id(tier_id), self._tiers[DEFAULT_TIER])

    def resolve_id(self, tier_id: str | None) -> str:
        return self.limits_for(tier_id).tier_id

    def tier_ids(self) -> list[str]:
        return list(self._tiers)
