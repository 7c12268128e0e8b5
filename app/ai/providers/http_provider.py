from __future__ import annotations

import logging
from typing import Any

import httpx

from app.ai.errors import from_httpx_error
from app.ai.types import AnalysisResult, CoverLetterResult, ExtractionResult
from app.metering.errors import Unavailable, UnknownProviderError

logger = logging.getLogger(__name__)


class HttpProvider:
    """Shared plumbing for providers reached over a plain JSON REST API."""

    capabilities: frozenset = frozenset()
    api_key_env = "API_KEY"

    def __init__(
        self,
        name: str,
        model: str,
        api_key: str | None,
        base_url: str,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.name = name
        self._model = model
        self._api_key = (api_key or "").strip()
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def healthy(self) -> bool:
        return bool(self._api_key)

    def _headers(self) -> dict[str, str]:
        return {"content-type": "application/json"}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout_s,
                transport=self._transport,
            )
        return self._client

    async def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.healthy:
            raise Unavailable(f"{self.name} is not configured ({self.api_key_env} missing)", provider=self.name)
        try:
            response = await self._get_client().post(path, json=payload, headers=self._headers())
            response.raise_for_status()
            data = response.json()
        except Exception as exc:  # noqa: BLE001 - mapped to a typed provider error
            raise from_httpx_error(exc, provider=self.name) from exc
        if not isinstance(data, dict):
            raise UnknownProviderError(f"{self.name} returned an unexpected payload", provider=self.name)
        return data

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def extract_text(self, content: bytes, filename: str) -> ExtractionResult:
        raise Unavailable(f"{self.name} does not support text extraction", provider=self.name)

    async def analyze(self, text: str, job_description: str | None = None) -> AnalysisResult:
        raise Unavailable(f"{self.name} does not support analysis", provider=self.name)

    async def generate_cover_letter(self, text: str, job_description: str) -> CoverLetterResult:
        raise Unavailable(f"{self.name} does not support cover letters", provider=self.name)
