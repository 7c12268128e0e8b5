import os
import unittest
from unittest.mock import patch

import support  # noqa: F401

from app.core.config.metering import get_metering_config
from app.metering.tiers import DEFAULT_TIER, UNLIMITED, TierCatalog, normalize_tier_id


class TierCatalogTests(unittest.TestCase):
    def setUp(self):
        self.catalog = TierCatalog.from_config(get_metering_config()["tiers"], apply_env_overrides=False)

    def test_five_tiers_loaded(self):
        self.assertEqual(
            sorted(self.catalog.tier_ids()),
            ["career-pro", "elite", "free", "professional", "starter"],
        )

    def test_free_tier_limits(self):
        free = self.catalog.limits_for("free")
        self.assertEqual(free.parsing_limit_per_period, 1)
        self.assertEqual(free.ai_call_limit_per_period, 1)
        self.assertEqual(free.limit_for("parsing"), 1)

    def test_unlimited_tiers(self):
        elite = self.catalog.limits_for("elite")
        self.assertEqual(elite.limit_for("parsing"), UNLIMITED)
        self.assertEqual(elite.limit_for("ai"), UNLIMITED)

    def test_unknown_tier_resolves_to_free(self):
        self.assertEqual(self.catalog.resolve_id("platinum"), DEFAULT_TIER)
        self.assertEqual(self.catalog.resolve_id(None), DEFAULT_TIER)
        self.assertEqual(self.catalog.resolve_id(""), DEFAULT_TIER)

    def test_legacy_aliases(self):
        self.assertEqual(normalize_tier_id("careerPro"), "career-pro")
        self.assertEqual(normalize_tier_id("career_pro"), "career-pro")
        self.assertEqual(normalize_tier_id("eliteExecutive"), "elite")
        self.assertEqual(normalize_tier_id("elite-executive"), "elite")
        self.assertEqual(normalize_tier_id(" Professional "), "professional")
        self.assertEqual(self.catalog.resolve_id("careerPro"), "career-pro")

    def test_as_dict_includes_features(self):
        info = self.catalog.limits_for("starter").as_dict()
        self.assertEqual(info["tier_id"], "starter")
        self.assertIn("ATS optimization", info["features"])

    def test_env_override(self):
        with patch.dict(os.environ, {"TIER_STARTER_AI_LIMIT": "3", "TIER_CAREER_PRO_COST_CEILING": "7.5"}):
            catalog = TierCatalog.from_config(get_metering_config()["tiers"])
        self.assertEqual(catalog.limits_for("starter").ai_call_limit_per_period, 3)
        self.assertEqual(catalog.limits_for("career-pro").cost_ceiling, 7.5)

    def test_catalog_requires_free_tier(self):
        with self.assertRaises(ValueError):
            TierCatalog.from_config({"starter": {"parsing_limit": 1}}, apply_env_overrides=False)


if __name__ == "__main__":
    unittest.main()
