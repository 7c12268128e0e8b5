from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence, Union

from app.ai.types import AnalysisResult, CoverLetterResult, ExtractionResult, ProviderAdapter
from app.metering.cost import CostEstimator
from app.metering.errors import (
    AllProvidersFailed,
    InvalidInput,
    OperationType,
    PayloadTooLarge,
    ProviderError,
    Unavailable,
    UnknownProviderError,
)
from app.metering.fingerprint import FingerprintRegistry, content_hash
from app.metering.ledger import UsageLedger
from app.metering.models import OPERATION_TYPES, CallOutcome, CostEstimate, ProviderOperation
from app.metering.quota import QuotaGate
from app.metering.tiers import DEFAULT_TIER, TierCatalog, TierDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsePayload:
    content: bytes
    filename: str


@dataclass(frozen=True)
class AnalyzePayload:
    text: str
    job_description: str | None = None


@dataclass(frozen=True)
class CoverLetterPayload:
    text: str
    job_description: str


Payload = Union[ParsePayload, AnalyzePayload, CoverLetterPayload]
ProviderResult = Union[ExtractionResult, AnalysisResult, CoverLetterResult]
AuditSink = Callable[..., None]

_PAYLOAD_TYPES: dict[str, type] = {
    "extract_text": ParsePayload,
    "analyze": AnalyzePayload,
    "generate_cover_letter": CoverLetterPayload,
}


class FallbackChains:
    """Ordered provider names per tier and operation type."""

    def __init__(self, chains: Mapping[str, Mapping[str, Sequence[str]]]):
        self._chains = {
            tier: {op: tuple(names) for op, names in (ops or {}).items()}
            for tier, ops in chains.items()
        }

    @classmethod
    def from_config(cls, raw_chains: Mapping[str, Any], *, apply_env_overrides: bool = True) -> "FallbackChains":
        chains: dict[str, dict[str, tuple[str, ...]]] = {}
        for tier, ops in raw_chains.items():
            tier_id = str(tier).strip().lower()
            chains[tier_id] = {}
            for op_type in ("parsing", "ai"):
                names = tuple(str(name) for name in (ops or {}).get(op_type) or [])
                if apply_env_overrides:
                    raw = os.getenv(f"CHAIN_{tier_id.upper().replace('-', '_')}_{op_type.upper()}")
                    if raw and raw.strip():
                        names = tuple(item.strip() for item in raw.split(",") if item.strip())
                chains[tier_id][op_type] = names
        return cls(chains)

    def for_tier(self, tier_id: str, op_type: OperationType) -> tuple[str, ...]:
        ops = self._chains.get(tier_id) or self._chains.get(DEFAULT_TIER) or {}
        return tuple(ops.get(op_type) or ())


class ProviderRouter:
    """Picks a provider for each request and meters the call.

    A request reserves one quota unit, walks the tier's fallback chain until a
    provider succeeds, then commits the finalized cost exactly once. Every
    path that ends without a result rolls the reservation back.
    """

    def __init__(
        self,
        *,
        adapters: Mapping[str, ProviderAdapter],
        chains: FallbackChains,
        catalog: TierCatalog,
        estimator: CostEstimator,
        ledger: UsageLedger,
        gate: QuotaGate,
        fingerprints: FingerprintRegistry,
        timeout_s: float = 30.0,
        audit: AuditSink | None = None,
    ):
        self._adapters = dict(adapters)
        self._chains = chains
        self._catalog = catalog
        self._estimator = estimator
        self._ledger = ledger
        self._gate = gate
        self._fingerprints = fingerprints
        self._timeout_s = timeout_s
        self._audit = audit

    def candidates_for(self, tier_id: str, operation: ProviderOperation) -> list[ProviderAdapter]:
        op_type = OPERATION_TYPES[operation]
        candidates: list[ProviderAdapter] = []
        for name in self._chains.for_tier(tier_id, op_type):
            adapter = self._adapters.get(name)
            if adapter is None:
                logger.warning("provider_chain_unknown tier=%s op=%s provider=%s", tier_id, op_type, name)
                continue
            if operation not in adapter.capabilities or not adapter.healthy:
                continue
            candidates.append(adapter)
        return candidates

    async def route(
        self,
        user_id: str,
        tier_id: str,
        operation: ProviderOperation,
        payload: Payload,
    ) -> CallOutcome:
        tier = self._catalog.limits_for(tier_id)
        self._validate(tier, operation, payload)

        if isinstance(payload, ParsePayload):
            fingerprint = content_hash(payload.content)
            async with self._fingerprints.claim(fingerprint):
                hit = self._fingerprints.lookup(fingerprint)
                if hit is not None:
                    logger.info(
                        "parse_dedup_hit user=%s hash=%s first_seen=%s",
                        user_id,
                        fingerprint[:16],
                        hit.first_seen_at.isoformat(),
                    )
                    return CallOutcome(
                        provider=hit.provider or "cache",
                        operation=operation,
                        success=True,
                        result=ExtractionResult(text=hit.text or "", confidence=hit.confidence or 0.0),
                        deduplicated=True,
                    )

                outcome = await self._metered_call(user_id, tier, operation, payload)
                extraction = outcome.result
                self._fingerprints.record(
                    fingerprint,
                    user_id=user_id,
                    cost=outcome.cost,
                    text=extraction.text,
                    confidence=extraction.confidence,
                    provider=outcome.provider,
                )
                return outcome

        return await self._metered_call(user_id, tier, operation, payload)

    def _payload_size(self, payload: Payload) -> int:
        if isinstance(payload, ParsePayload):
            return len(payload.content)
        size = len(payload.text.encode("utf-8"))
        if payload.job_description:
            size += len(payload.job_description.encode("utf-8"))
        return size

    def _validate(self, tier: TierDefinition, operation: ProviderOperation, payload: Payload) -> None:
        expected = _PAYLOAD_TYPES[operation]
        if not isinstance(payload, expected):
            raise InvalidInput(f"{operation} expects {expected.__name__}", provider="router")

        if isinstance(payload, ParsePayload):
            if not payload.content:
                raise InvalidInput("Uploaded document is empty", provider="router")
            return

        if not payload.text.strip():
            raise InvalidInput("CV text is empty", provider="router")
        if isinstance(payload, CoverLetterPayload) and not payload.job_description.strip():
            raise InvalidInput("Job description is required", provider="router")

        prompt_tokens = self._estimator.tokens_for(self._payload_size(payload))
        if prompt_tokens > tier.max_tokens_per_request:
            raise PayloadTooLarge(
                f"Request needs about {prompt_tokens} tokens; the {tier.tier_id} plan allows "
                f"{tier.max_tokens_per_request} per request.",
                provider="router",
            )

    async def _invoke(self, adapter: ProviderAdapter, operation: ProviderOperation, payload: Payload) -> ProviderResult:
        if isinstance(payload, ParsePayload):
            return await adapter.extract_text(payload.content, payload.filename)
        if isinstance(payload, CoverLetterPayload):
            return await adapter.generate_cover_letter(payload.text, payload.job_description)
        return await adapter.analyze(payload.text, payload.job_description)

    async def _attempt(
        self, adapter: ProviderAdapter, operation: ProviderOperation, payload: Payload
    ) -> ProviderResult:
        try:
            return await asyncio.wait_for(self._invoke(adapter, operation, payload), timeout=self._timeout_s)
        except asyncio.TimeoutError as exc:
            raise Unavailable(
                f"{adapter.name} timed out after {self._timeout_s:.1f}s", provider=adapter.name
            ) from exc
        except ProviderError:
            raise
        except Exception as exc:  # noqa: BLE001 - adapters must not leak untyped errors
            logger.exception("provider_untyped_error provider=%s op=%s", adapter.name, operation)
            raise UnknownProviderError(
                f"{adapter.name} failed: {exc.__class__.__name__}", provider=adapter.name
            ) from exc

    def _outcome(
        self,
        adapter: ProviderAdapter,
        operation: ProviderOperation,
        estimate: CostEstimate,
        result: ProviderResult,
        started: float,
    ) -> CallOutcome:
        tokens_in = int(getattr(result, "tokens_in", 0) or 0)
        tokens_out = int(getattr(result, "tokens_out", 0) or 0)
        pages = 0
        if isinstance(result, ExtractionResult):
            pages = result.pages if result.pages > 0 else estimate.units
        cost = self._estimator.finalize(estimate, tokens_in=tokens_in, tokens_out=tokens_out, pages=pages)
        return CallOutcome(
            provider=adapter.name,
            operation=operation,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            pages=pages,
            cost=cost,
            duration_ms=int((time.perf_counter() - started) * 1000),
            success=True,
            result=result,
        )

    def _record_audit(self, outcome: CallOutcome, *, user_id: str, tier_id: str) -> None:
        if self._audit is None:
            return
        try:
            self._audit(outcome, user_id=user_id, tier_id=tier_id)
        except Exception:  # pragma: no cover - audit must not break AI responses
            logger.debug("provider_call_audit_failed", exc_info=True)

    async def _metered_call(
        self,
        user_id: str,
        tier: TierDefinition,
        operation: ProviderOperation,
        payload: Payload,
    ) -> CallOutcome:
        op_type = OPERATION_TYPES[operation]
        await self._gate.check(user_id, tier.tier_id, op_type)

        size = self._payload_size(payload)
        attempts: list[str] = []
        last_error: ProviderError | None = None
        resolved = False
        try:
            for adapter in self.candidates_for(tier.tier_id, operation):
                attempts.append(adapter.name)
                estimate = self._estimator.estimate(operation, size, adapter.name)
                started = time.perf_counter()
                try:
                    result = await self._attempt(adapter, operation, payload)
                except ProviderError as exc:
                    last_error = exc
                    self._record_audit(
                        CallOutcome(
                            provider=adapter.name,
                            operation=operation,
                            duration_ms=int((time.perf_counter() - started) * 1000),
                            success=False,
                            error_kind=exc.kind,
                            attempts=list(attempts),
                        ),
                        user_id=user_id,
                        tier_id=tier.tier_id,
                    )
                    logger.warning(
                        "provider_call_failed provider=%s op=%s tier=%s kind=%s attempt=%s detail=%s",
                        adapter.name,
                        operation,
                        tier.tier_id,
                        exc.kind,
                        len(attempts),
                        exc.detail,
                    )
                    if not exc.transient:
                        raise
                    continue

                outcome = self._outcome(adapter, operation, estimate, result, started)
                outcome.attempts = list(attempts)
                resolved = True
                await asyncio.shield(self._ledger.commit(user_id, op_type, outcome.cost))
                self._record_audit(outcome, user_id=user_id, tier_id=tier.tier_id)
                logger.info(
                    "provider_call_succeeded provider=%s op=%s tier=%s cost=%.6f tokens_in=%s tokens_out=%s "
                    "pages=%s estimated=%.6f duration_ms=%s attempts=%s",
                    adapter.name,
                    operation,
                    tier.tier_id,
                    outcome.cost,
                    outcome.tokens_in,
                    outcome.tokens_out,
                    outcome.pages,
                    estimate.total,
                    outcome.duration_ms,
                    len(attempts),
                )
                return outcome

            logger.error(
                "all_providers_failed op=%s tier=%s attempts=%s last_kind=%s",
                operation,
                tier.tier_id,
                attempts,
                last_error.kind if last_error else None,
            )
            raise AllProvidersFailed(op_type=op_type, attempts=attempts, last_error=last_error)
        finally:
            if not resolved:
                await asyncio.shield(self._ledger.rollback_reservation(user_id, op_type))
