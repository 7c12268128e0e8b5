from __future__ import annotations

from typing import Any

from app.ai.config import ProviderConfig
from app.ai.prompts import build_analysis_messages, build_cover_letter_messages, parse_analysis_payload
from app.ai.providers.http_provider import HttpProvider
from app.ai.types import AnalysisResult, ChatMessage, CoverLetterResult
from app.metering.errors import UnknownProviderError

ANTHROPIC_VERSION = "2023-06-01"


class ClaudeProvider(HttpProvider):
    capabilities = frozenset({"analyze", "generate_cover_letter"})
    api_key_env = "ANTHROPIC_API_KEY"

    def _headers(self) -> dict[str, str]:
        return {
            "content-type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    async def _messages(
        self, messages: list[ChatMessage], *, max_tokens: int, temperature: float
    ) -> tuple[str, int, int]:
        system = "\n".join(m.content for m in messages if m.role == "system")
        payload: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": m.role, "content": m.content} for m in messages if m.role != "system"],
        }
        if system:
            payload["system"] = system

        data = await self._post_json("/v1/messages", payload)
        blocks = data.get("content") or []
        text = "".join(
            str(block.get("text", "")) for block in blocks if isinstance(block, dict) and block.get("type") == "text"
        ).strip()
        if not text:
            raise UnknownProviderError(f"{self.name} returned an empty response", provider=self.name)
        usage = data.get("usage") or {}
        return text, int(usage.get("input_tokens") or 0), int(usage.get("output_tokens") or 0)

    async def analyze(self, text: str, job_description: str | None = None) -> AnalysisResult:
        raw, tokens_in, tokens_out = await self._messages(
            build_analysis_messages(text, job_description), max_tokens=2000, temperature=0.3
        )
        return parse_analysis_payload(raw, provider=self.name, tokens_in=tokens_in, tokens_out=tokens_out)

    async def generate_cover_letter(self, text: str, job_description: str) -> CoverLetterResult:
        letter, tokens_in, tokens_out = await self._messages(
            build_cover_letter_messages(text, job_description), max_tokens=1000, temperature=0.7
        )
        return CoverLetterResult(letter=letter, tokens_in=tokens_in, tokens_out=tokens_out)


def from_config(config: ProviderConfig) -> ClaudeProvider:
    return ClaudeProvider(
        name=config.name,
        model=config.model or "claude-3-haiku-20240307",
        api_key=config.api_key,
        base_url=config.base_url or "https://api.anthropic.com",
        timeout_s=config.timeout_s,
    )
