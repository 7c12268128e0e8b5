from __future__ import annotations

import logging
from typing import Any

from app.metering.context import MeteringContext
from app.metering.errors import (
    AllProvidersFailed,
    InvalidContent,
    InvalidInput,
    PayloadTooLarge,
    ProviderError,
    QuotaExceeded,
)
from app.metering.fingerprint import content_hash
from app.metering.models import CallOutcome, ProviderOperation
from app.metering.router import AnalyzePayload, CoverLetterPayload, ParsePayload, Payload
from app.normalize.cv_content import normalize_cv_content
from app.parsing.documents import ALLOWED_EXTENSIONS, file_extension
from app.services.document_store import DocumentStore

logger = logging.getLogger(__name__)

GENERIC_FAILURE_DETAIL = "Analysis temporarily unavailable. Please try again later."

_FAILURE_CODES: dict[str, str] = {
    "extract_text": "PARSING_FAILED",
    "analyze": "AI_ANALYSIS_FAILED",
    "generate_cover_letter": "COVER_LETTER_FAILED",
}

_LIMIT_CODES: dict[str, str] = {
    "parsing": "PARSING_LIMIT_EXCEEDED",
    "ai": "AI_LIMIT_EXCEEDED",
}


class CVServiceError(RuntimeError):
    def __init__(self, code: str, message: str, status_code: int = 500, **extra: Any):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.extra = extra

    def as_detail(self) -> dict[str, Any]:
        return {"error": self.code, "details": str(self), **self.extra}


class CVAIService:
    """Request-level CV workflows on top of the metering context."""

    def __init__(self, context: MeteringContext, documents: DocumentStore):
        self.context = context
        self.documents = documents

    async def aclose(self) -> None:
        await self.context.aclose()
        close = getattr(self.documents, "close", None)
        if close is not None:
            close()

    def _load_cv_text(self, user_id: str, document_id: str) -> str:
        document = self.documents.get_document(user_id, document_id)
        if document is None:
            raise CVServiceError("CV_NOT_FOUND", "CV not found.", 404)
        try:
            return normalize_cv_content(document.get("content")).text
        except InvalidContent as exc:
            logger.info("cv_content_rejected user=%s document=%s detail=%s", user_id, document_id, exc.detail)
            raise CVServiceError("INVALID_CV_CONTENT", exc.detail, 400) from exc

    async def _route(
        self,
        user_id: str,
        tier_id: str,
        operation: ProviderOperation,
        payload: Payload,
    ) -> CallOutcome:
        try:
            return await self.context.router.route(user_id, tier_id, operation, payload)
        except QuotaExceeded as exc:
            raise CVServiceError(
                _LIMIT_CODES[exc.op_type],
                exc.detail,
                429,
                tier=exc.tier,
                limit=exc.limit,
                remaining=exc.remaining,
                reason=exc.reason,
                cost_ceiling=exc.cost_ceiling,
            ) from exc
        except PayloadTooLarge as exc:
            raise CVServiceError("PAYLOAD_TOO_LARGE", exc.detail, 413) from exc
        except InvalidInput as exc:
            if exc.provider == "router":
                raise CVServiceError("MISSING_INPUT", exc.detail, 400) from exc
            raise CVServiceError("INVALID_CV_CONTENT", "The provider rejected this document.", 400) from exc
        except AllProvidersFailed as exc:
            logger.error(
                "cv_request_failed user=%s op=%s attempts=%s last_kind=%s last_detail=%s",
                user_id,
                operation,
                exc.attempts,
                exc.last_error.kind if exc.last_error else None,
                exc.last_error.detail if exc.last_error else None,
            )
            raise CVServiceError(_FAILURE_CODES[operation], GENERIC_FAILURE_DETAIL, 500) from exc
        except ProviderError as exc:
            logger.error("cv_request_failed user=%s op=%s kind=%s detail=%s", user_id, operation, exc.kind, exc.detail)
            raise CVServiceError(_FAILURE_CODES[operation], GENERIC_FAILURE_DETAIL, 500) from exc

    async def analyze(
        self,
        user_id: str,
        tier_id: str,
        document_id: str,
        job_description: str | None = None,
    ) -> dict[str, Any]:
        if not user_id or not document_id:
            raise CVServiceError("MISSING_INPUT", "user_id and document_id are required.", 400)
        tier = self.context.catalog.resolve_id(tier_id)
        text = self._load_cv_text(user_id, document_id)
        jd = (job_description or "").strip() or None

        outcome = await self._route(user_id, tier, "analyze", AnalyzePayload(text=text, job_description=jd))
        analysis = outcome.result.as_dict()
        self.documents.save_analysis(user_id, document_id, analysis)
        logger.info(
            "cv_analysis_completed user=%s document=%s provider=%s cost=%.6f",
            user_id,
            document_id,
            outcome.provider,
            outcome.cost,
        )
        return {
            "success": True,
            "analysis": analysis,
            "provider": outcome.provider,
            "cost": outcome.cost,
            "tier": tier,
            "usage": await self.context.ledger.snapshot(user_id, tier),
        }

    async def cover_letter(
        self,
        user_id: str,
        tier_id: str,
        document_id: str,
        job_description: str | None,
    ) -> dict[str, Any]:
        if not user_id or not document_id:
            raise CVServiceError("MISSING_INPUT", "user_id and document_id are required.", 400)
        jd = (job_description or "").strip()
        if not jd:
            raise CVServiceError("MISSING_DATA", "A job description is required for a cover letter.", 400)
        tier = self.context.catalog.resolve_id(tier_id)
        text = self._load_cv_text(user_id, document_id)

        outcome = await self._route(
            user_id, tier, "generate_cover_letter", CoverLetterPayload(text=text, job_description=jd)
        )
        logger.info(
            "cover_letter_completed user=%s document=%s provider=%s cost=%.6f",
            user_id,
            document_id,
            outcome.provider,
            outcome.cost,
        )
        return {
            "success": True,
            "cover_letter": outcome.result.letter,
            "provider": outcome.provider,
            "cost": outcome.cost,
            "tier": tier,
            "usage": await self.context.ledger.snapshot(user_id, tier),
        }

    async def parse(self, user_id: str, tier_id: str, filename: str, content: bytes) -> dict[str, Any]:
        if not user_id:
            raise CVServiceError("MISSING_INPUT", "user_id is required.", 400)
        ext = file_extension(filename)
        if ext not in ALLOWED_EXTENSIONS:
            raise CVServiceError(
                "MISSING_INPUT",
                f"Unsupported file type '.{ext}'. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}.",
                400,
            )
        if not content:
            raise CVServiceError("MISSING_INPUT", "Uploaded document is empty.", 400)
        tier = self.context.catalog.resolve_id(tier_id)

        outcome = await self._route(user_id, tier, "extract_text", ParsePayload(content=content, filename=filename))
        extraction = outcome.result
        return {
            "success": True,
            "text": extraction.text,
            "confidence": extraction.confidence,
            "provider": outcome.provider,
            "cost": outcome.cost,
            "deduplicated": outcome.deduplicated,
            "fingerprint": content_hash(content),
            "tier": tier,
            "usage": await self.context.ledger.snapshot(user_id, tier),
        }

    async def usage(self, user_id: str, tier_id: str) -> dict[str, Any]:
        if not user_id:
            raise CVServiceError("MISSING_INPUT", "user_id is required.", 400)
        return await self.context.ledger.snapshot(user_id, tier_id)

    def tier_info(self, tier_id: str | None) -> dict[str, Any]:
        return self.context.catalog.limits_for(tier_id).as_dict()
