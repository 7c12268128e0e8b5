from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal

from app.metering.errors import ErrorKind, OperationType

RecordState = Literal["active", "expired"]
ProviderOperation = Literal["extract_text", "analyze", "generate_cover_letter"]

OPERATION_TYPES: dict[str, OperationType] = {
    "extract_text": "parsing",
    "analyze": "ai",
    "generate_cover_letter": "ai",
}


@dataclass(frozen=True)
class UsageRecord:
    user_id: str
    period_start: datetime
    period_end: datetime
    parsing_count: int = 0
    ai_call_count: int = 0
    accumulated_cost: float = 0.0

    def state(self, now: datetime) -> RecordState:
        return "expired" if now >= self.period_end else "active"

    def count_for(self, op_type: OperationType) -> int:
        return self.parsing_count if op_type == "parsing" else self.ai_call_count

    def incremented(self, op_type: OperationType, cost: float) -> "UsageRecord":
        if op_type == "parsing":
            return replace(
                self,
                parsing_count=self.parsing_count + 1,
                accumulated_cost=self.accumulated_cost + cost,
            )
        return replace(
            self,
            ai_call_count=self.ai_call_count + 1,
            accumulated_cost=self.accumulated_cost + cost,
        )


@dataclass(frozen=True)
class Decision:
    allowed: bool
    remaining: int
    limit: int
    used: int = 0
    reason: str | None = None


@dataclass(frozen=True)
class CostEstimate:
    provider: str
    operation: ProviderOperation
    units: int
    unit_cost: float
    total: float


@dataclass(frozen=True)
class FileFingerprint:
    hash: str
    user_id: str
    first_seen_at: datetime
    last_cost: float
    text: str | None = None
    confidence: float | None = None
    provider: str | None = None


@dataclass
class CallOutcome:
    provider: str
    operation: ProviderOperation
    tokens_in: int = 0
    tokens_out: int = 0
    pages: int = 0
    cost: float = 0.0
    duration_ms: int = 0
    success: bool = False
    error_kind: ErrorKind | None = None
    result: Any = None
    deduplicated: bool = False
    attempts: list[str] = field(default_factory=list)
