import asyncio
import unittest

import support  # noqa: F401

from app.metering.fingerprint import FingerprintRegistry, content_hash
from app.metering.store import InMemoryUsageStore


class FingerprintTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.registry = FingerprintRegistry(InMemoryUsageStore())

    def test_hash_is_deterministic(self):
        payload = b"%PDF-1.4 example resume"
        self.assertEqual(content_hash(payload), content_hash(bytes(payload)))
        self.assertEqual(len(content_hash(payload)), 64)
        self.assertNotEqual(content_hash(payload), content_hash(payload + b" "))

    def test_miss_is_none(self):
        self.assertIsNone(self.registry.lookup(content_hash(b"never seen")))

    def test_record_then_lookup(self):
        digest = content_hash(b"resume bytes")
        self.registry.record(digest, user_id="u1", cost=0.0015, text="Jane Doe", confidence=95.0, provider="openai-mini")
        hit = self.registry.lookup(digest)
        self.assertIsNotNone(hit)
        self.assertEqual(hit.text, "Jane Doe")
        self.assertEqual(hit.last_cost, 0.0015)

    def test_record_without_text_counts_as_miss(self):
        digest = content_hash(b"blank scan")
        self.registry.record(digest, user_id="u1", cost=0.0015, text="", confidence=None, provider="openai-mini")
        self.assertIsNone(self.registry.lookup(digest))

    async def test_claim_serializes_same_hash(self):
        digest = content_hash(b"same upload")
        order = []

        async def worker(label):
            async with self.registry.claim(digest):
                order.append(f"{label}-in")
                await asyncio.sleep(0.01)
                order.append(f"{label}-out")

        await asyncio.gather(worker("a"), worker("b"))
        self.assertEqual(order[0][0], order[1][0])
        self.assertEqual(order[2][0], order[3][0])


if __name__ == "__main__":
    unittest.main()
