import asyncio
import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("USAGE_STORE_BACKEND", "memory")
os.environ.setdefault("AUDIT_ENABLED", "0")
os.environ.setdefault("RATE_LIMIT_ENABLED", "0")

from app.ai.types import AnalysisResult, CoverLetterResult, ExtractionResult
from app.core.config import settings
from app.core.config.metering import get_metering_config
from app.metering.context import build_context
from app.metering.store import InMemoryUsageStore

ALL_CAPABILITIES = frozenset({"extract_text", "analyze", "generate_cover_letter"})


class FakeAdapter:
    """Scripted provider: each call pops the next step, falling back to `default`.

    A step is either a result object or an exception instance to raise.
    """

    def __init__(
        self,
        name,
        *,
        steps=None,
        default=None,
        capabilities=ALL_CAPABILITIES,
        healthy=True,
        delay=0.0,
    ):
        self.name = name
        self.capabilities = frozenset(capabilities)
        self._healthy = healthy
        self._steps = list(steps or [])
        self._default = default
        self.delay = delay
        self.calls = []

    @property
    def healthy(self):
        return self._healthy

    async def _run(self, operation, fallback):
        self.calls.append(operation)
        if self.delay:
            await asyncio.sleep(self.delay)
        step = self._steps.pop(0) if self._steps else (self._default or fallback)
        if isinstance(step, BaseException):
            raise step
        return step

    async def extract_text(self, content, filename):
        return await self._run("extract_text", ExtractionResult(text=f"text from {self.name}", confidence=90.0, pages=1))

    async def analyze(self, text, job_description=None):
        return await self._run(
            "analyze",
            AnalysisResult(
                scores={"overall_score": 80},
                strengths=["Clear structure"],
                weaknesses=["Few metrics"],
                suggestions=["Quantify impact"],
                tokens_in=400,
                tokens_out=200,
            ),
        )

    async def generate_cover_letter(self, text, job_description):
        return await self._run(
            "generate_cover_letter",
            CoverLetterResult(letter=f"Dear hiring manager, from {self.name}", tokens_in=300, tokens_out=150),
        )


class FixedClock:
    def __init__(self, now=None):
        self.now = now or datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def make_context(adapters, *, store=None, clock=None, timeout_s=None, audit=None):
    """Metering context over the repo config with only the given fake adapters."""
    config = get_metering_config()
    context_settings = settings
    if timeout_s is not None:
        context_settings = replace(settings, provider_timeout_s=timeout_s)
    return build_context(
        config,
        context_settings,
        store=store if store is not None else InMemoryUsageStore(),
        adapters={adapter.name: adapter for adapter in adapters},
        clock=clock or FixedClock(),
        audit=audit,
        apply_env_overrides=False,
    )


def default_adapters():
    names = ["openai-mini", "openai", "claude-haiku", "claude-sonnet", "gemini-flash", "cohere"]
    return [FakeAdapter(name) for name in names]
