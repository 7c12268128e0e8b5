import unittest

from support import FakeAdapter, make_context

from app.ai.types import AnalysisResult
from app.metering.errors import QuotaExceeded, Unavailable
from app.metering.router import ParsePayload
from app.services.cv_ai_service import CVAIService, CVServiceError
from app.services.document_store import InMemoryDocumentStore


class FreeTierParseScenario(unittest.IsolatedAsyncioTestCase):
    async def test_second_parse_in_period_is_rejected_without_provider_call(self):
        ocr = FakeAdapter("openai-mini")
        context = make_context([ocr, FakeAdapter("gemini-flash")])

        first = await context.router.route(
            "free-user", "free", "extract_text", ParsePayload(content=b"%PDF-1.4 first cv", filename="cv.pdf")
        )
        self.assertTrue(first.success)
        self.assertEqual((await context.ledger.current_usage("free-user")).parsing_count, 1)

        with self.assertRaises(QuotaExceeded) as ctx:
            await context.router.route(
                "free-user", "free", "extract_text", ParsePayload(content=b"%PDF-1.4 second cv", filename="cv.pdf")
            )
        self.assertEqual(ctx.exception.remaining, 0)
        self.assertEqual(ctx.exception.op_type, "parsing")
        self.assertEqual(len(ocr.calls), 1)


class ProfessionalFallbackScenario(unittest.IsolatedAsyncioTestCase):
    async def test_primary_unavailable_secondary_commits_once(self):
        primary = FakeAdapter("openai", default=Unavailable("timed out", provider="openai"))
        secondary = FakeAdapter(
            "claude-haiku",
            default=AnalysisResult(
                scores={"overall_score": 81},
                strengths=["Leadership"],
                weaknesses=["Dates missing"],
                suggestions=["Add dates"],
                tokens_in=500,
                tokens_out=300,
            ),
        )
        context = make_context([primary, secondary, FakeAdapter("openai-mini")])
        documents = InMemoryDocumentStore()
        documents.put_document("pro-user", "cv-1", {"raw_text": "Pat Lee\nEngineering Manager, 10 years."})
        service = CVAIService(context, documents)

        before = await context.ledger.current_usage("pro-user")
        response = await service.analyze("pro-user", "professional", "cv-1")
        after = await context.ledger.current_usage("pro-user")

        pricing = context.estimator.pricing_for("claude-haiku")
        expected = 0.5 * pricing.input_cost_per_1k + 0.3 * pricing.output_cost_per_1k
        self.assertEqual(response["provider"], "claude-haiku")
        self.assertAlmostEqual(response["cost"], expected)
        self.assertAlmostEqual(after.accumulated_cost - before.accumulated_cost, expected)
        self.assertEqual(after.ai_call_count - before.ai_call_count, 1)
        self.assertEqual(response["usage"]["ai_call_count"], 1)
        self.assertEqual(response["analysis"]["scores"]["overall_score"], 81)
        self.assertEqual(documents.get_document("pro-user", "cv-1")["ai_suggestions"]["strengths"], ["Leadership"])


class CVAIServiceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.adapters = [FakeAdapter("openai-mini"), FakeAdapter("gemini-flash"), FakeAdapter("cohere")]
        self.context = make_context(self.adapters)
        self.documents = InMemoryDocumentStore()
        self.documents.put_document(
            "u1",
            "cv-1",
            {
                "personalInfo": {"fullName": "Ana Ruiz", "email": "ana@example.com"},
                "summary": "Data engineer focused on streaming pipelines.",
                "experience": [{"title": "Data Engineer", "company": "Acme", "achievements": ["Cut costs 30%"]}],
                "skills": ["Python", "Kafka"],
            },
        )
        self.documents.put_document("u1", "broken", {"unexpected": True})
        self.service = CVAIService(self.context, self.documents)

    async def _expect(self, code, coro):
        with self.assertRaises(CVServiceError) as ctx:
            await coro
        self.assertEqual(ctx.exception.code, code)
        return ctx.exception

    async def test_cover_letter(self):
        response = await self.service.cover_letter("u1", "starter", "cv-1", "Data engineer at a fintech")
        self.assertTrue(response["cover_letter"].startswith("Dear hiring manager"))
        self.assertEqual(response["tier"], "starter")
        self.assertEqual(response["usage"]["ai_call_count"], 1)

    async def test_cover_letter_requires_job_description(self):
        await self._expect("MISSING_DATA", self.service.cover_letter("u1", "starter", "cv-1", "  "))
        self.assertEqual(self.adapters[0].calls, [])

    async def test_missing_document_id(self):
        await self._expect("MISSING_INPUT", self.service.analyze("u1", "starter", ""))

    async def test_unknown_document(self):
        error = await self._expect("CV_NOT_FOUND", self.service.analyze("u1", "starter", "nope"))
        self.assertEqual(error.status_code, 404)

    async def test_documents_are_owner_scoped(self):
        await self._expect("CV_NOT_FOUND", self.service.analyze("u2", "starter", "cv-1"))

    async def test_unrecognised_cv_shape(self):
        error = await self._expect("INVALID_CV_CONTENT", self.service.analyze("u1", "starter", "broken"))
        self.assertEqual(error.status_code, 400)
        self.assertEqual((await self.context.ledger.current_usage("u1")).ai_call_count, 0)

    async def test_quota_error_carries_tier_and_limit(self):
        await self.service.analyze("u1", "free", "cv-1")
        error = await self._expect("AI_LIMIT_EXCEEDED", self.service.analyze("u1", "free", "cv-1"))
        self.assertEqual(error.status_code, 429)
        self.assertEqual(error.as_detail()["tier"], "free")
        self.assertEqual(error.as_detail()["limit"], 1)
        self.assertEqual(error.as_detail()["remaining"], 0)

    async def test_cost_ceiling_error_reports_the_ceiling(self):
        await self.context.ledger.try_reserve("u1", "career-pro", "ai")
        await self.context.ledger.commit("u1", "ai", 30.0)
        error = await self._expect("AI_LIMIT_EXCEEDED", self.service.analyze("u1", "career-pro", "cv-1"))
        detail = error.as_detail()
        self.assertEqual(error.status_code, 429)
        self.assertEqual(detail["reason"], "cost_ceiling")
        self.assertEqual(detail["cost_ceiling"], 25.0)
        self.assertEqual(self.adapters[0].calls, [])

    async def test_provider_failure_is_generic(self):
        for adapter in self.adapters:
            adapter._default = Unavailable("upstream said: secret stack trace", provider=adapter.name)
        error = await self._expect("AI_ANALYSIS_FAILED", self.service.analyze("u1", "starter", "cv-1"))
        self.assertEqual(error.status_code, 500)
        self.assertNotIn("secret", str(error))

    async def test_parse_reports_fingerprint_and_dedup(self):
        first = await self.service.parse("u1", "starter", "cv.png", b"\x89PNG fake image")
        second = await self.service.parse("u1", "starter", "cv.png", b"\x89PNG fake image")
        self.assertEqual(first["fingerprint"], second["fingerprint"])
        self.assertFalse(first["deduplicated"])
        self.assertTrue(second["deduplicated"])
        self.assertEqual(second["usage"]["parsing_count"], 1)

    async def test_parse_rejects_unsupported_type(self):
        await self._expect("MISSING_INPUT", self.service.parse("u1", "starter", "cv.exe", b"MZ"))

    async def test_parse_limit_code(self):
        await self.service.parse("u1", "free", "a.pdf", b"%PDF-1.4 a")
        await self._expect("PARSING_LIMIT_EXCEEDED", self.service.parse("u1", "free", "b.pdf", b"%PDF-1.4 b"))

    async def test_usage_and_tier_info(self):
        usage = await self.service.usage("u1", "careerPro")
        self.assertEqual(usage["tier"], "career-pro")
        self.assertEqual(usage["limits"]["parsing"], -1)
        info = self.service.tier_info("unknown")
        self.assertEqual(info["tier_id"], "free")


if __name__ == "__main__":
    unittest.main()
