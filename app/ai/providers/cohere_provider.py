from __future__ import annotations

from typing import Any

from app.ai.config import ProviderConfig
from app.ai.prompts import build_analysis_messages, build_cover_letter_messages, parse_analysis_payload
from app.ai.providers.http_provider import HttpProvider
from app.ai.types import AnalysisResult, ChatMessage, CoverLetterResult
from app.metering.errors import UnknownProviderError


class CohereProvider(HttpProvider):
    capabilities = frozenset({"analyze", "generate_cover_letter"})
    api_key_env = "COHERE_API_KEY"

    def _headers(self) -> dict[str, str]:
        return {"content-type": "application/json", "authorization": f"Bearer {self._api_key}"}

    async def _chat(
        self, messages: list[ChatMessage], *, max_tokens: int, temperature: float, json_mode: bool = False
    ) -> tuple[str, int, int]:
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        data = await self._post_json("/v2/chat", payload)
        message = data.get("message") or {}
        text = "".join(
            str(item.get("text", ""))
            for item in message.get("content") or []
            if isinstance(item, dict) and item.get("type") == "text"
        ).strip()
        if not text:
            raise UnknownProviderError(f"{self.name} returned an empty response", provider=self.name)
        tokens = (data.get("usage") or {}).get("tokens") or {}
        return text, int(tokens.get("input_tokens") or 0), int(tokens.get("output_tokens") or 0)

    async def analyze(self, text: str, job_description: str | None = None) -> AnalysisResult:
        raw, tokens_in, tokens_out = await self._chat(
            build_analysis_messages(text, job_description), max_tokens=2000, temperature=0.3, json_mode=True
        )
        return parse_analysis_payload(raw, provider=self.name, tokens_in=tokens_in, tokens_out=tokens_out)

    async def generate_cover_letter(self, text: str, job_description: str) -> CoverLetterResult:
        letter, tokens_in, tokens_out = await self._chat(
            build_cover_letter_messages(text, job_description), max_tokens=1000, temperature=0.7
        )
        return CoverLetterResult(letter=letter, tokens_in=tokens_in, tokens_out=tokens_out)


def from_config(config: ProviderConfig) -> CohereProvider:
    return CohereProvider(
        name=config.name,
        model=config.model or "command-r",
        api_key=config.api_key,
        base_url=config.base_url or "https://api.cohere.com",
        timeout_s=config.timeout_s,
    )
