from __future__ import annotations

from typing import Literal

OperationType = Literal["parsing", "ai"]

ErrorKind = Literal[
    "quota_exceeded",
    "rate_limited",
    "invalid_input",
    "payload_too_large",
    "unavailable",
    "unknown",
    "all_providers_failed",
]


class MeteringError(RuntimeError):
    kind: ErrorKind = "unknown"

    def __init__(self, message: str):
        super().__init__(message)
        self.detail = message


class InvalidContent(MeteringError):
    """Stored CV content that does not match any known shape."""

    kind: ErrorKind = "invalid_input"


class QuotaExceeded(MeteringError):
    kind: ErrorKind = "quota_exceeded"

    def __init__(
        self,
        *,
        tier: str,
        op_type: OperationType,
        limit: int,
        used: int,
        reason: str = "limit_reached",
        cost_ceiling: float = 0.0,
    ):
        if reason == "cost_ceiling":
            message = f"Monthly cost ceiling reached for the {tier} plan. Upgrade your plan to continue."
        elif op_type == "parsing":
            message = f"Parsing limit reached ({used}/{limit}). Upgrade your plan for more parsing."
        else:
            message = f"AI usage limit reached ({used}/{limit}). Upgrade your plan for more AI features."
        super().__init__(message)
        self.tier = tier
        self.op_type = op_type
        self.limit = limit
        self.remaining = 0
        self.reason = reason
        self.cost_ceiling = cost_ceiling


class ProviderError(MeteringError):
    """Typed failure raised by a provider adapter; the router dispatches on `kind`."""

    transient = False

    def __init__(self, message: str, *, provider: str = "unknown"):
        super().__init__(message)
        self.provider = provider


class RateLimited(ProviderError):
    kind: ErrorKind = "rate_limited"
    transient = True


class Unavailable(ProviderError):
    kind: ErrorKind = "unavailable"
    transient = True


class InvalidInput(ProviderError):
    kind: ErrorKind = "invalid_input"


class PayloadTooLarge(ProviderError):
    kind: ErrorKind = "payload_too_large"


class UnknownProviderError(ProviderError):
    kind: ErrorKind = "unknown"
    transient = True


class AllProvidersFailed(MeteringError):
    kind: ErrorKind = "all_providers_failed"

    def __init__(self, *, op_type: OperationType, attempts: list[str], last_error: ProviderError | None):
        super().__init__("Analysis temporarily unavailable. Please try again later.")
        self.op_type = op_type
        self.attempts = attempts
        self.last_error = last_error
