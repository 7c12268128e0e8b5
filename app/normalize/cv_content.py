from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from app.metering.errors import InvalidContent
from app.schemas.cv_content import NormalizedCV, RawTextContent, StructuredContent

from .utils import normalize_line, strip_bullet_prefix

_STRUCTURED_KEYS = {
    "personal_info",
    "personalInfo",
    "summary",
    "professional_summary",
    "profile",
    "experience",
    "work_experience",
    "workExperience",
    "education",
    "skills",
    "certifications",
}


def parse_cv_content(content: Any) -> RawTextContent | StructuredContent:
    """Classify stored CV content into one of the known shapes.

    Accepted: plain text, a JSON string holding an object, an object with
    `raw_text`, or a structured CV object. Anything else is rejected.
    """
    if isinstance(content, str):
        stripped = content.strip()
        if not stripped:
            raise InvalidContent("CV content is empty")
        if stripped.startswith("{"):
            try:
                decoded = json.loads(stripped)
            except json.JSONDecodeError:
                return RawTextContent(raw_text=stripped)
            return parse_cv_content(decoded)
        return RawTextContent(raw_text=stripped)

    if not isinstance(content, dict):
        raise InvalidContent(f"Unsupported CV content type: {type(content).__name__}")

    if "raw_text" in content:
        raw_text = content["raw_text"]
        if not isinstance(raw_text, str) or not raw_text.strip():
            raise InvalidContent("CV raw_text must be a non-empty string")
        return RawTextContent(raw_text=raw_text.strip())

    if not _STRUCTURED_KEYS.intersection(content):
        raise InvalidContent("CV content has no recognised sections")

    try:
        return StructuredContent.model_validate(content)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise InvalidContent(f"CV content has invalid fields: {', '.join(fields)}") from exc


def _render_structured(content: StructuredContent) -> tuple[str, list[str]]:
    lines: list[str] = []
    sections: list[str] = []

    info = content.personal_info
    header = [normalize_line(v) for v in (info.full_name, info.title, info.email, info.phone, info.location) if v.strip()]
    if header:
        sections.append("personal_info")
        lines.extend(header)

    if content.summary.strip():
        sections.append("summary")
        lines.extend(["", "Summary", normalize_line(content.summary)])

    if content.experience:
        sections.append("experience")
        lines.extend(["", "Experience"])
        for entry in content.experience:
            heading = " - ".join(v for v in (entry.title.strip(), entry.company.strip()) if v)
            dates = " to ".join(v for v in (entry.start_date.strip(), entry.end_date.strip()) if v)
            if heading or dates:
                lines.append(f"{heading} ({dates})" if dates else heading)
            for description_line in entry.description.splitlines():
                if description_line.strip():
                    lines.append(normalize_line(description_line))
            lines.extend(f"- {strip_bullet_prefix(item)}" for item in entry.achievements if item.strip())

    if content.education:
        sections.append("education")
        lines.extend(["", "Education"])
        for entry in content.education:
            parts = [v.strip() for v in (entry.degree, entry.field_of_study, entry.institution, entry.graduation_date)]
            rendered = ", ".join(p for p in parts if p)
            if rendered:
                lines.append(rendered)

    if content.skills:
        sections.append("skills")
        lines.extend(["", "Skills", ", ".join(s.strip() for s in content.skills if s.strip())])

    if content.certifications:
        sections.append("certifications")
        lines.extend(["", "Certifications"])
        lines.extend(c.strip() for c in content.certifications if c.strip())

    return "\n".join(lines).strip(), sections


def normalize_cv_content(content: Any) -> NormalizedCV:
    parsed = parse_cv_content(content)
    if isinstance(parsed, RawTextContent):
        return NormalizedCV(kind="raw_text", text=parsed.raw_text, sections=[])

    text, sections = _render_structured(parsed)
    if not text:
        raise InvalidContent("CV content has no text")
    return NormalizedCV(kind="structured", text=text, sections=sections)
