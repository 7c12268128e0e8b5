from __future__ import annotations

import json
import re
from typing import Any

from app.ai.types import AnalysisResult, ChatMessage
from app.metering.errors import UnknownProviderError

ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert CV reviewer and ATS specialist. "
    "Return strictly valid JSON and nothing else."
)

OCR_SYSTEM_PROMPT = "Extract all text from this CV document. Return plain text only, preserving line breaks."

_SCORE_KEYS = ("overall_score", "ats_compatibility", "readability_score", "industry_match")
_JSON_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def build_analysis_messages(cv_text: str, job_description: str | None = None) -> list[ChatMessage]:
    prompt = (
        "Analyze this CV and provide a comprehensive assessment. Return a JSON object with:\n"
        "- overall_score (0-100)\n"
        "- ats_compatibility (0-100)\n"
        "- readability_score (0-100)\n"
        "- strengths (array of 3-5 key strengths)\n"
        "- weaknesses (array of 3-5 areas for improvement)\n"
        "- suggestions (array of specific improvement suggestions)\n"
        "- missing_keywords (array of relevant keywords not found)\n"
        "- industry_match (0-100, only if a job description is provided)\n\n"
        f"CV Content: {cv_text}"
    )
    if job_description:
        prompt += f"\n\nJob Description: {job_description}"
    return [
        ChatMessage(role="system", content=ANALYSIS_SYSTEM_PROMPT),
        ChatMessage(role="user", content=prompt),
    ]


def build_cover_letter_messages(cv_text: str, job_description: str) -> list[ChatMessage]:
    prompt = (
        "Write a professional cover letter based on this CV and job description.\n"
        "The cover letter should be:\n"
        "- 250-350 words\n"
        "- Professional and engaging\n"
        "- Highlight relevant experience from the CV\n"
        "- Address key requirements from the job description\n"
        "- End with a strong call to action\n\n"
        f"CV Summary: {cv_text[:4000]}\n"
        f"Job Description: {job_description}\n\n"
        "Write the cover letter:"
    )
    return [ChatMessage(role="user", content=prompt)]


def _clamp_score(value: Any) -> int | None:
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return None
    return max(0, min(100, number))


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def parse_analysis_payload(raw_text: str, *, provider: str, tokens_in: int, tokens_out: int) -> AnalysisResult:
    cleaned = _JSON_FENCE.sub("", (raw_text or "").strip())
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise UnknownProviderError(f"{provider} returned a non-JSON analysis", provider=provider) from exc
    if not isinstance(parsed, dict):
        raise UnknownProviderError(f"{provider} returned an analysis that is not an object", provider=provider)

    scores: dict[str, int] = {}
    for key in _SCORE_KEYS:
        score = _clamp_score(parsed.get(key))
        if score is not None:
            scores[key] = score

    return AnalysisResult(
        scores=scores,
        strengths=_string_list(parsed.get("strengths")),
        weaknesses=_string_list(parsed.get("weaknesses")),
        suggestions=_string_list(parsed.get("suggestions")),
        missing_keywords=_string_list(parsed.get("missing_keywords")),
        tokens_in=tokens_in,
        tokens_out=tokens_out,
    )
