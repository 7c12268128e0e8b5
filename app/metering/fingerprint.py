from __future__ import annotations

import asyncio
import hashlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from app.metering.models import FileFingerprint
from app.metering.store import FingerprintStore

logger = logging.getLogger(__name__)


def content_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class FingerprintRegistry:
    """Dedup table for parsed documents.

    A hit only counts when the stored text is still retrievable; a record
    without text is treated as a miss and the document is parsed again.
    """

    def __init__(self, store: FingerprintStore):
        self._store = store
        self._claims: dict[str, asyncio.Lock] = {}
        self._claim_refs: dict[str, int] = {}

    def lookup(self, fingerprint_hash: str) -> FileFingerprint | None:
        found = self._store.get_fingerprint(fingerprint_hash)
        if found is None or not found.text:
            return None
        return found

    def record(
        self,
        fingerprint_hash: str,
        *,
        user_id: str,
        cost: float,
        text: str,
        confidence: float | None,
        provider: str,
    ) -> FileFingerprint:
        fingerprint = FileFingerprint(
            hash=fingerprint_hash,
            user_id=user_id,
            first_seen_at=datetime.now(timezone.utc),
            last_cost=cost,
            text=text,
            confidence=confidence,
            provider=provider,
        )
        self._store.put_fingerprint(fingerprint)
        logger.info("fingerprint_recorded hash=%s user=%s cost=%.6f", fingerprint_hash[:16], user_id, cost)
        return fingerprint

    @asynccontextmanager
    async def claim(self, fingerprint_hash: str) -> AsyncIterator[None]:
        """Serialize lookup-or-parse for one hash so identical uploads parse once."""
        lock = self._claims.get(fingerprint_hash)
        if lock is None:
            lock = asyncio.Lock()
            self._claims[fingerprint_hash] = lock
        self._claim_refs[fingerprint_hash] = self._claim_refs.get(fingerprint_hash, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._claim_refs[fingerprint_hash] -= 1
            if self._claim_refs[fingerprint_hash] == 0:
                del self._claim_refs[fingerprint_hash]
                self._claims.pop(fingerprint_hash, None)
