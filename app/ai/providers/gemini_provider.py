from __future__ import annotations

import base64
from typing import Any

from app.ai.config import ProviderConfig
from app.ai.prompts import (
    OCR_SYSTEM_PROMPT,
    build_analysis_messages,
    build_cover_letter_messages,
    parse_analysis_payload,
)
from app.ai.providers.http_provider import HttpProvider
from app.ai.types import AnalysisResult, ChatMessage, CoverLetterResult, ExtractionResult
from app.metering.errors import InvalidInput, UnknownProviderError
from app.parsing.documents import file_extension, mime_type_for, page_count


class GeminiProvider(HttpProvider):
    capabilities = frozenset({"extract_text", "analyze", "generate_cover_letter"})
    api_key_env = "GEMINI_API_KEY"

    def _headers(self) -> dict[str, str]:
        return {"content-type": "application/json", "x-goog-api-key": self._api_key}

    async def _generate(
        self,
        parts: list[dict[str, Any]],
        *,
        system: str | None,
        max_tokens: int,
        temperature: float,
        json_mode: bool = False,
    ) -> tuple[str, int, int]:
        generation_config: dict[str, Any] = {"maxOutputTokens": max_tokens, "temperature": temperature}
        if json_mode:
            generation_config["responseMimeType"] = "application/json"
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        data = await self._post_json(f"/v1beta/models/{self._model}:generateContent", payload)
        candidates = data.get("candidates") or []
        content = (candidates[0].get("content") or {}) if candidates else {}
        text = "".join(str(part.get("text", "")) for part in content.get("parts") or []).strip()
        if not text:
            raise UnknownProviderError(f"{self.name} returned an empty response", provider=self.name)
        usage = data.get("usageMetadata") or {}
        return text, int(usage.get("promptTokenCount") or 0), int(usage.get("candidatesTokenCount") or 0)

    @staticmethod
    def _split(messages: list[ChatMessage]) -> tuple[str | None, list[dict[str, Any]]]:
        system = "\n".join(m.content for m in messages if m.role == "system") or None
        parts = [{"text": m.content} for m in messages if m.role != "system"]
        return system, parts

    async def extract_text(self, content: bytes, filename: str) -> ExtractionResult:
        mime = mime_type_for(filename)
        if mime is None:
            raise InvalidInput(f"Unsupported file type '.{file_extension(filename)}'", provider=self.name)
        parts = [
            {"text": "Read this document and return its full text."},
            {"inline_data": {"mime_type": mime, "data": base64.b64encode(content).decode("utf-8")}},
        ]
        text, tokens_in, tokens_out = await self._generate(
            parts, system=OCR_SYSTEM_PROMPT, max_tokens=4000, temperature=0.0
        )
        return ExtractionResult(
            text=text,
            confidence=92.0,
            pages=page_count(content, filename),
            tokens_in=tokens_in,
            tokens_out=tokens_out,
        )

    async def analyze(self, text: str, job_description: str | None = None) -> AnalysisResult:
        system, parts = self._split(build_analysis_messages(text, job_description))
        raw, tokens_in, tokens_out = await self._generate(
            parts, system=system, max_tokens=2000, temperature=0.3, json_mode=True
        )
        return parse_analysis_payload(raw, provider=self.name, tokens_in=tokens_in, tokens_out=tokens_out)

    async def generate_cover_letter(self, text: str, job_description: str) -> CoverLetterResult:
        system, parts = self._split(build_cover_letter_messages(text, job_description))
        letter, tokens_in, tokens_out = await self._generate(
            parts, system=system, max_tokens=1000, temperature=0.7
        )
        return CoverLetterResult(letter=letter, tokens_in=tokens_in, tokens_out=tokens_out)


def from_config(config: ProviderConfig) -> GeminiProvider:
    return GeminiProvider(
        name=config.name,
        model=config.model or "gemini-1.5-flash",
        api_key=config.api_key,
        base_url=config.base_url or "https://generativelanguage.googleapis.com",
        timeout_s=config.timeout_s,
    )
