from __future__ import annotations

import logging

from app.metering.errors import OperationType, QuotaExceeded
from app.metering.ledger import UsageLedger
from app.metering.models import Decision
from app.metering.tiers import TierCatalog

logger = logging.getLogger(__name__)


class QuotaGate:
    def __init__(self, ledger: UsageLedger, catalog: TierCatalog):
        self._ledger = ledger
        self._catalog = catalog

    async def check(self, user_id: str, tier_id: str, op_type: OperationType) -> Decision:
        """Reserve one unit of `op_type` for the user or raise QuotaExceeded.

        A successful check leaves a pending reservation on the ledger that the
        caller must commit or roll back.
        """
        tier = self._catalog.limits_for(tier_id)
        decision = await self._ledger.try_reserve(user_id, tier.tier_id, op_type)
        if decision.allowed:
            return decision

        logger.info(
            "quota_denied user=%s tier=%s op=%s used=%s limit=%s reason=%s",
            user_id,
            tier.tier_id,
            op_type,
            decision.used,
            decision.limit,
            decision.reason,
        )
        raise QuotaExceeded(
            tier=tier.tier_id,
            op_type=op_type,
            limit=decision.limit,
            used=decision.used,
            reason=decision.reason or "limit_reached",
            cost_ceiling=tier.cost_ceiling,
        )
