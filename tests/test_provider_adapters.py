import json
import unittest
from dataclasses import replace

import httpx
import openai

import support  # noqa: F401

from app.ai.errors import error_for_status, from_openai_error
from app.ai.factory import build_adapters
from app.ai.providers.claude_provider import ClaudeProvider
from app.ai.providers.cohere_provider import CohereProvider
from app.ai.providers.gemini_provider import GeminiProvider
from app.ai.providers.openai_provider import OpenAIProvider
from app.core.config import settings
from app.core.config.metering import get_metering_config
from app.metering.errors import (
    InvalidInput,
    PayloadTooLarge,
    RateLimited,
    Unavailable,
    UnknownProviderError,
)

ANALYSIS_JSON = json.dumps(
    {
        "overall_score": 84,
        "ats_compatibility": 130,
        "strengths": ["Clear impact"],
        "weaknesses": "Too long",
        "suggestions": ["Trim to two pages"],
        "missing_keywords": ["Kubernetes"],
    }
)


def _transport(handler, seen):
    def wrapped(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.MockTransport(wrapped)


class ClaudeProviderTests(unittest.IsolatedAsyncioTestCase):
    async def test_analyze_parses_json_and_usage(self):
        seen = []
        provider = ClaudeProvider(
            name="claude-haiku",
            model="claude-3-haiku-20240307",
            api_key="sk-test",
            base_url="https://claude.test",
            transport=_transport(
                lambda request: httpx.Response(
                    200,
                    json={
                        "content": [{"type": "text", "text": ANALYSIS_JSON}],
                        "usage": {"input_tokens": 500, "output_tokens": 300},
                    },
                ),
                seen,
            ),
        )
        result = await provider.analyze("Jane Doe CV", "Platform engineer")
        await provider.close()

        self.assertEqual(result.tokens_in, 500)
        self.assertEqual(result.tokens_out, 300)
        self.assertEqual(result.scores["overall_score"], 84)
        self.assertEqual(result.scores["ats_compatibility"], 100)
        self.assertEqual(result.missing_keywords, ["Kubernetes"])
        self.assertEqual(seen[0].url.path, "/v1/messages")
        self.assertEqual(seen[0].headers["x-api-key"], "sk-test")
        body = json.loads(seen[0].content)
        self.assertIn("system", body)
        self.assertTrue(all(m["role"] != "system" for m in body["messages"]))

    async def test_status_codes_map_to_typed_errors(self):
        cases = [(429, RateLimited), (503, Unavailable), (400, InvalidInput), (413, PayloadTooLarge)]
        for status_code, expected in cases:
            with self.subTest(status_code=status_code):
                provider = ClaudeProvider(
                    name="claude-haiku",
                    model="m",
                    api_key="sk-test",
                    base_url="https://claude.test",
                    transport=httpx.MockTransport(lambda request, code=status_code: httpx.Response(code, json={})),
                )
                with self.assertRaises(expected) as ctx:
                    await provider.generate_cover_letter("cv", "jd")
                self.assertEqual(ctx.exception.provider, "claude-haiku")
                await provider.close()

    async def test_non_json_analysis_is_transient(self):
        provider = ClaudeProvider(
            name="claude-haiku",
            model="m",
            api_key="sk-test",
            base_url="https://claude.test",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"content": [{"type": "text", "text": "not json"}]})
            ),
        )
        with self.assertRaises(UnknownProviderError) as ctx:
            await provider.analyze("cv")
        self.assertTrue(ctx.exception.transient)
        await provider.close()

    async def test_connection_error_is_unavailable(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        provider = ClaudeProvider(
            name="claude-haiku",
            model="m",
            api_key="sk-test",
            base_url="https://claude.test",
            transport=httpx.MockTransport(refuse),
        )
        with self.assertRaises(Unavailable):
            await provider.generate_cover_letter("cv", "jd")
        await provider.close()

    async def test_without_key_is_unhealthy(self):
        provider = ClaudeProvider(name="claude-haiku", model="m", api_key=None, base_url="https://claude.test")
        self.assertFalse(provider.healthy)
        with self.assertRaises(Unavailable):
            await provider.generate_cover_letter("cv", "jd")

    async def test_text_extraction_is_unsupported(self):
        provider = ClaudeProvider(name="claude-haiku", model="m", api_key="k", base_url="https://claude.test")
        self.assertNotIn("extract_text", provider.capabilities)
        with self.assertRaises(Unavailable):
            await provider.extract_text(b"%PDF", "cv.pdf")


class GeminiProviderTests(unittest.IsolatedAsyncioTestCase):
    async def test_extract_text_sends_inline_document(self):
        seen = []
        provider = GeminiProvider(
            name="gemini-flash",
            model="gemini-1.5-flash",
            api_key="g-test",
            base_url="https://gemini.test",
            transport=_transport(
                lambda request: httpx.Response(
                    200,
                    json={
                        "candidates": [{"content": {"parts": [{"text": "Jane Doe\nEngineer"}]}}],
                        "usageMetadata": {"promptTokenCount": 258, "candidatesTokenCount": 12},
                    },
                ),
                seen,
            ),
        )
        result = await provider.extract_text(b"\x89PNG fake", "cv.png")
        await provider.close()

        self.assertEqual(result.text, "Jane Doe\nEngineer")
        self.assertEqual(result.pages, 1)
        self.assertEqual(seen[0].url.path, "/v1beta/models/gemini-1.5-flash:generateContent")
        body = json.loads(seen[0].content)
        inline = body["contents"][0]["parts"][1]["inline_data"]
        self.assertEqual(inline["mime_type"], "image/png")

    async def test_unsupported_file_is_invalid_input(self):
        provider = GeminiProvider(name="gemini-flash", model="m", api_key="g", base_url="https://gemini.test")
        with self.assertRaises(InvalidInput):
            await provider.extract_text(b"data", "cv.exe")

    async def test_empty_candidates_is_unknown(self):
        provider = GeminiProvider(
            name="gemini-flash",
            model="m",
            api_key="g",
            base_url="https://gemini.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []})),
        )
        with self.assertRaises(UnknownProviderError):
            await provider.generate_cover_letter("cv", "jd")
        await provider.close()


class CohereProviderTests(unittest.IsolatedAsyncioTestCase):
    async def test_cover_letter(self):
        seen = []
        provider = CohereProvider(
            name="cohere",
            model="command-r",
            api_key="c-test",
            base_url="https://cohere.test",
            transport=_transport(
                lambda request: httpx.Response(
                    200,
                    json={
                        "message": {"content": [{"type": "text", "text": "Dear team, ..."}]},
                        "usage": {"tokens": {"input_tokens": 210, "output_tokens": 90}},
                    },
                ),
                seen,
            ),
        )
        result = await provider.generate_cover_letter("cv", "jd")
        await provider.close()

        self.assertEqual(result.letter, "Dear team, ...")
        self.assertEqual((result.tokens_in, result.tokens_out), (210, 90))
        self.assertEqual(seen[0].url.path, "/v2/chat")
        self.assertEqual(seen[0].headers["authorization"], "Bearer c-test")


class OpenAIProviderTests(unittest.IsolatedAsyncioTestCase):
    async def test_without_key_is_unhealthy(self):
        provider = OpenAIProvider(name="openai-mini", model="gpt-4o-mini", api_key="")
        self.assertFalse(provider.healthy)
        with self.assertRaises(Unavailable):
            await provider.analyze("cv")

    def test_openai_errors_map_to_typed_errors(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        rate_limited = openai.RateLimitError("slow down", response=httpx.Response(429, request=request), body=None)
        bad_request = openai.BadRequestError("bad", response=httpx.Response(400, request=request), body=None)
        timeout = openai.APITimeoutError(request=request)

        self.assertIsInstance(from_openai_error(rate_limited, provider="openai"), RateLimited)
        self.assertIsInstance(from_openai_error(bad_request, provider="openai"), InvalidInput)
        self.assertIsInstance(from_openai_error(timeout, provider="openai"), Unavailable)
        self.assertIsInstance(from_openai_error(RuntimeError("x"), provider="openai"), UnknownProviderError)


class ErrorMappingTests(unittest.TestCase):
    def test_error_for_status(self):
        self.assertIsInstance(error_for_status(429, provider="p"), RateLimited)
        self.assertIsInstance(error_for_status(422, provider="p"), InvalidInput)
        self.assertIsInstance(error_for_status(502, provider="p"), Unavailable)
        self.assertIsInstance(error_for_status(418, provider="p"), UnknownProviderError)


class AdapterFactoryTests(unittest.TestCase):
    def test_builds_every_configured_provider(self):
        unconfigured = replace(
            settings,
            openai_api_key=None,
            anthropic_api_key=None,
            gemini_api_key="your_gemini_key",
            cohere_api_key="c-live",
        )
        adapters = build_adapters(get_metering_config()["providers"], unconfigured)

        self.assertEqual(
            sorted(adapters),
            ["claude-haiku", "claude-sonnet", "cohere", "gemini-flash", "openai", "openai-mini"],
        )
        self.assertFalse(adapters["openai-mini"].healthy)
        self.assertFalse(adapters["gemini-flash"].healthy)
        self.assertTrue(adapters["cohere"].healthy)


if __name__ == "__main__":
    unittest.main()
