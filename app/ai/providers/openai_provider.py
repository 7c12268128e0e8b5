from __future__ import annotations

import base64
import logging
import os
from typing import Any, Optional, Sequence

from openai import AsyncOpenAI

from app.ai.config import ProviderConfig
from app.ai.errors import from_openai_error
from app.ai.prompts import (
    OCR_SYSTEM_PROMPT,
    build_analysis_messages,
    build_cover_letter_messages,
    parse_analysis_payload,
)
from app.ai.types import AnalysisResult, ChatMessage, CoverLetterResult, ExtractionResult
from app.metering.errors import InvalidInput, Unavailable, UnknownProviderError
from app.parsing.documents import file_extension, is_image, mime_type_for, page_count

logger = logging.getLogger(__name__)


class OpenAIProvider:
    capabilities = frozenset({"extract_text", "analyze", "generate_cover_letter"})

    def __init__(
        self,
        name: str,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: float = 30.0,
        max_retries: int = 0,
        temperature: float = 0.3,
    ):
        self.name = name
        self._model = model
        self._temperature = temperature
        key = (api_key or "").strip()
        self._client: AsyncOpenAI | None = None
        if key:
            self._client = AsyncOpenAI(
                api_key=key,
                base_url=base_url or None,
                timeout=timeout_s,
                max_retries=int(os.getenv("OPENAI_MAX_RETRIES", str(max_retries))),
            )

    @property
    def healthy(self) -> bool:
        return self._client is not None

    def _require_client(self) -> AsyncOpenAI:
        if self._client is None:
            raise Unavailable(f"{self.name} is not configured (OPENAI_API_KEY missing)", provider=self.name)
        return self._client

    async def _complete(
        self,
        messages: Sequence[ChatMessage] | list[dict[str, Any]],
        *,
        max_tokens: int,
        json_mode: bool = False,
        temperature: float | None = None,
    ) -> tuple[str, int, int]:
        client = self._require_client()
        payload = [
            m if isinstance(m, dict) else {"role": m.role, "content": m.content}
            for m in messages
        ]
        create_kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": payload,
            "temperature": self._temperature if temperature is None else temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            create_kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await client.chat.completions.create(**create_kwargs)
        except Exception as exc:  # noqa: BLE001 - mapped to a typed provider error
            raise from_openai_error(exc, provider=self.name) from exc

        content = response.choices[0].message.content if response.choices else ""
        usage = getattr(response, "usage", None)
        tokens_in = int(getattr(usage, "prompt_tokens", 0) or 0)
        tokens_out = int(getattr(usage, "completion_tokens", 0) or 0)
        if not content:
            raise UnknownProviderError(f"{self.name} returned an empty response", provider=self.name)
        return str(content).strip(), tokens_in, tokens_out

    async def extract_text(self, content: bytes, filename: str) -> ExtractionResult:
        mime = mime_type_for(filename)
        if mime is None:
            raise InvalidInput(f"Unsupported file type '.{file_extension(filename)}'", provider=self.name)

        encoded = base64.b64encode(content).decode("utf-8")
        data_url = f"data:{mime};base64,{encoded}"
        if is_image(filename):
            document_part: dict[str, Any] = {"type": "image_url", "image_url": {"url": data_url}}
        else:
            document_part = {"type": "file", "file": {"filename": filename, "file_data": data_url}}

        messages = [
            {"role": "system", "content": OCR_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "Read this document and return its full text."},
                    document_part,
                ],
            },
        ]
        text, tokens_in, tokens_out = await self._complete(messages, max_tokens=4000, temperature=0.0)
        return ExtractionResult(
            text=text,
            confidence=90.0,
            pages=page_count(content, filename),
            tokens_in=tokens_in,
            tokens_out=tokens_out,
        )

    async def analyze(self, text: str, job_description: str | None = None) -> AnalysisResult:
        messages = build_analysis_messages(text, job_description)
        raw, tokens_in, tokens_out = await self._complete(messages, max_tokens=2000, json_mode=True)
        return parse_analysis_payload(raw, provider=self.name, tokens_in=tokens_in, tokens_out=tokens_out)

    async def generate_cover_letter(self, text: str, job_description: str) -> CoverLetterResult:
        messages = build_cover_letter_messages(text, job_description)
        letter, tokens_in, tokens_out = await self._complete(messages, max_tokens=1000, temperature=0.7)
        return CoverLetterResult(letter=letter, tokens_in=tokens_in, tokens_out=tokens_out)


def from_config(config: ProviderConfig) -> OpenAIProvider:
    return OpenAIProvider(
        name=config.name,
        model=config.model or "gpt-4o-mini",
        api_key=config.api_key,
        base_url=config.base_url,
        timeout_s=config.timeout_s,
    )
