from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class CVRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(default="", max_length=200, validation_alias=AliasChoices("user_id", "userId"))
    document_id: str = Field(default="", max_length=200, validation_alias=AliasChoices("document_id", "documentId"))


class AnalyzeRequest(CVRequest):
    job_description: str | None = Field(
        default=None,
        max_length=120000,
        validation_alias=AliasChoices("job_description", "jobDescription"),
    )


class CoverLetterRequest(CVRequest):
    job_description: str = Field(
        default="",
        max_length=120000,
        validation_alias=AliasChoices("job_description", "jobDescription"),
    )


class UsageLimits(BaseModel):
    parsing: int
    ai: int
    cost_ceiling: float


class UsageSnapshot(BaseModel):
    parsing_count: int
    ai_call_count: int
    total_cost: float
    tier: str
    period_start: datetime
    period_end: datetime
    limits: UsageLimits


class AnalyzeResponse(BaseModel):
    success: bool = True
    analysis: dict[str, Any]
    provider: str
    cost: float
    tier: str
    usage: UsageSnapshot


class CoverLetterResponse(BaseModel):
    success: bool = True
    cover_letter: str
    provider: str
    cost: float
    tier: str
    usage: UsageSnapshot


class ParseResponse(BaseModel):
    success: bool = True
    text: str
    confidence: float
    provider: str
    cost: float
    deduplicated: bool
    fingerprint: str
    tier: str
    usage: UsageSnapshot


class TierInfoResponse(BaseModel):
    tier_id: str
    parsing_limit_per_period: int
    ai_call_limit_per_period: int
    max_tokens_per_request: int
    cost_ceiling: float
    features: list[str] = Field(default_factory=list)
