import unittest

import support  # noqa: F401

from app.core.config.metering import get_metering_config
from app.metering.cost import CostEstimator, ProviderPricing


class CostEstimatorTests(unittest.TestCase):
    def setUp(self):
        self.estimator = CostEstimator(
            {
                "ocr": ProviderPricing(provider="ocr", page_cost=0.0015),
                "llm": ProviderPricing(provider="llm", input_cost_per_1k=0.001, output_cost_per_1k=0.002),
            },
            kb_per_page=50,
            bytes_per_token=4,
            completion_tokens={"analyze": 2000, "generate_cover_letter": 1000},
        )

    def test_pages_round_up_with_minimum_of_one(self):
        self.assertEqual(self.estimator.pages_for(0), 1)
        self.assertEqual(self.estimator.pages_for(50 * 1024), 1)
        self.assertEqual(self.estimator.pages_for(50 * 1024 + 1), 2)
        self.assertEqual(self.estimator.pages_for(240 * 1024), 5)

    def test_parsing_estimate(self):
        estimate = self.estimator.estimate("extract_text", 120 * 1024, "ocr")
        self.assertEqual(estimate.units, 3)
        self.assertAlmostEqual(estimate.total, 3 * 0.0015)

    def test_ai_estimate_includes_completion_ceiling(self):
        estimate = self.estimator.estimate("analyze", 4000, "llm")
        self.assertEqual(estimate.units, 1000 + 2000)
        self.assertAlmostEqual(estimate.total, 1.0 * 0.001 + 2.0 * 0.002)

    def test_finalize_uses_observed_tokens(self):
        estimate = self.estimator.estimate("generate_cover_letter", 4000, "llm")
        cost = self.estimator.finalize(estimate, tokens_in=500, tokens_out=300)
        self.assertAlmostEqual(cost, 0.5 * 0.001 + 0.3 * 0.002)

    def test_finalize_parsing_prefers_observed_pages(self):
        estimate = self.estimator.estimate("extract_text", 10 * 1024, "ocr")
        self.assertAlmostEqual(self.estimator.finalize(estimate, pages=4), 4 * 0.0015)
        self.assertAlmostEqual(self.estimator.finalize(estimate), 1 * 0.0015)

    def test_unknown_provider_costs_nothing(self):
        estimate = self.estimator.estimate("analyze", 400, "mystery")
        self.assertEqual(estimate.total, 0.0)

    def test_from_config_reads_repo_pricing(self):
        estimator = CostEstimator.from_config(get_metering_config())
        self.assertEqual(estimator.pricing_for("claude-haiku").input_cost_per_1k, 0.00025)
        self.assertEqual(estimator.completion_ceiling("analyze"), 2000)
        self.assertEqual(estimator.completion_ceiling("generate_cover_letter"), 1000)


if __name__ == "__main__":
    unittest.main()
