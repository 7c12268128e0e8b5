from __future__ import annotations

import httpx
import openai

from app.metering.errors import (
    InvalidInput,
    PayloadTooLarge,
    ProviderError,
    RateLimited,
    Unavailable,
    UnknownProviderError,
)


def error_for_status(status_code: int, *, provider: str, message: str = "") -> ProviderError:
    detail = message or f"{provider} responded with HTTP {status_code}"
    if status_code == 429:
        return RateLimited(detail, provider=provider)
    if status_code == 413:
        return PayloadTooLarge(detail, provider=provider)
    if status_code in {400, 422}:
        return InvalidInput(detail, provider=provider)
    if status_code in {401, 403, 404, 408} or status_code >= 500:
        return Unavailable(detail, provider=provider)
    return UnknownProviderError(detail, provider=provider)


def from_httpx_error(exc: Exception, *, provider: str) -> ProviderError:
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return error_for_status(exc.response.status_code, provider=provider)
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return Unavailable(f"{provider} unreachable: {exc.__class__.__name__}", provider=provider)
    return UnknownProviderError(f"{provider} failed: {exc.__class__.__name__}", provider=provider)


def from_openai_error(exc: Exception, *, provider: str) -> ProviderError:
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, openai.RateLimitError):
        return RateLimited(f"{provider} rate limited", provider=provider)
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
        return Unavailable(f"{provider} unreachable: {exc.__class__.__name__}", provider=provider)
    if isinstance(exc, openai.APIStatusError):
        return error_for_status(exc.status_code, provider=provider)
    return UnknownProviderError(f"{provider} failed: {exc.__class__.__name__}", provider=provider)
