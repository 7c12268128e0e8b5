from dataclasses import dataclass, field
from typing import Any, FrozenSet, Literal, Protocol

Role = Literal["system", "user", "assistant"]
Capability = Literal["extract_text", "analyze", "generate_cover_letter"]


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    confidence: float
    pages: int = 0
    tokens_in: int = 0
    tokens_out: int = 0


@dataclass(frozen=True)
class AnalysisResult:
    scores: dict[str, int]
    strengths: list[str]
    weaknesses: list[str]
    suggestions: list[str]
    missing_keywords: list[str] = field(default_factory=list)
    tokens_in: int = 0
    tokens_out: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "scores": dict(self.scores),
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
            "suggestions": list(self.suggestions),
            "missing_keywords": list(self.missing_keywords),
        }


@dataclass(frozen=True)
class CoverLetterResult:
    letter: str
    tokens_in: int = 0
    tokens_out: int = 0


class ProviderAdapter(Protocol):
    name: str
    capabilities: FrozenSet[Capability]

    @property
    def healthy(self) -> bool: ...

    async def extract_text(self, content: bytes, filename: str) -> ExtractionResult: ...

    async def analyze(self, text: str, job_description: str | None = None) -> AnalysisResult: ...

    async def generate_cover_letter(self, text: str, job_description: str) -> CoverLetterResult: ...
