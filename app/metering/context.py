from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from app.ai.factory import build_adapters
from app.ai.types import ProviderAdapter
from app.core.config import Settings
from app.metering.cost import CostEstimator
from app.metering.fingerprint import FingerprintRegistry
from app.metering.ledger import Clock, UsageLedger, utc_now
from app.metering.quota import QuotaGate
from app.metering.router import AuditSink, FallbackChains, ProviderRouter
from app.metering.store import InMemoryUsageStore, SqliteUsageStore
from app.metering.tiers import TierCatalog

logger = logging.getLogger(__name__)


@dataclass
class MeteringContext:
    """Everything one request needs to reach a provider, built once at startup."""

    catalog: TierCatalog
    estimator: CostEstimator
    ledger: UsageLedger
    gate: QuotaGate
    fingerprints: FingerprintRegistry
    router: ProviderRouter
    adapters: dict[str, ProviderAdapter]
    store: Any

    async def aclose(self) -> None:
        for adapter in self.adapters.values():
            close = getattr(adapter, "close", None)
            if close is not None:
                await close()
        store_close = getattr(self.store, "close", None)
        if store_close is not None:
            store_close()


def build_store(settings: Settings) -> InMemoryUsageStore | SqliteUsageStore:
    if settings.usage_store_backend == "memory":
        return InMemoryUsageStore()
    return SqliteUsageStore(settings.usage_db_path)


def build_context(
    config: Mapping[str, Any],
    settings: Settings,
    *,
    store: Any | None = None,
    adapters: Mapping[str, ProviderAdapter] | None = None,
    clock: Clock = utc_now,
    audit: AuditSink | None = None,
    apply_env_overrides: bool = True,
) -> MeteringContext:
    catalog = TierCatalog.from_config(config["tiers"], apply_env_overrides=apply_env_overrides)
    estimator = CostEstimator.from_config(config)
    chains = FallbackChains.from_config(config["chains"], apply_env_overrides=apply_env_overrides)
    usage_store = store if store is not None else build_store(settings)
    provider_adapters = dict(adapters) if adapters is not None else build_adapters(config["providers"], settings)

    ledger = UsageLedger(usage_store, catalog, clock=clock)
    gate = QuotaGate(ledger, catalog)
    fingerprints = FingerprintRegistry(usage_store)
    router = ProviderRouter(
        adapters=provider_adapters,
        chains=chains,
        catalog=catalog,
        estimator=estimator,
        ledger=ledger,
        gate=gate,
        fingerprints=fingerprints,
        timeout_s=settings.provider_timeout_s,
        audit=audit,
    )
    logger.info(
        "metering_context_ready tiers=%s providers=%s healthy=%s",
        catalog.tier_ids(),
        sorted(provider_adapters),
        sorted(name for name, a in provider_adapters.items() if a.healthy),
    )
    return MeteringContext(
        catalog=catalog,
        estimator=estimator,
        ledger=ledger,
        gate=gate,
        fingerprints=fingerprints,
        router=router,
        adapters=provider_adapters,
        store=usage_store,
    )
