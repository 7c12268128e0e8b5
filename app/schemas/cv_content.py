from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

CVContentKind = Literal["raw_text", "structured"]


def _join_text(value: Any) -> Any:
    if isinstance(value, list):
        if not all(isinstance(item, str) for item in value):
            raise ValueError("expected a string or a list of strings")
        return "\n".join(item.strip() for item in value if item.strip())
    return value


def _text_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [line for line in value.splitlines() if line.strip()]
    return value


class PersonalInfo(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    full_name: str = Field(default="", validation_alias=AliasChoices("full_name", "fullName", "name"))
    title: str = Field(default="", validation_alias=AliasChoices("title", "headline", "job_title", "jobTitle"))
    email: str = ""
    phone: str = ""
    location: str = ""


class ExperienceEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str = Field(default="", validation_alias=AliasChoices("title", "position", "role"))
    company: str = Field(default="", validation_alias=AliasChoices("company", "employer", "organization"))
    start_date: str = Field(default="", validation_alias=AliasChoices("start_date", "startDate"))
    end_date: str = Field(default="", validation_alias=AliasChoices("end_date", "endDate"))
    description: str = ""
    achievements: list[str] = Field(default_factory=list)

    @field_validator("description", mode="before")
    @classmethod
    def _join_description(cls, value: Any) -> Any:
        return _join_text(value)

    @field_validator("achievements", mode="before")
    @classmethod
    def _split_achievements(cls, value: Any) -> Any:
        return _text_list(value)


class EducationEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    degree: str = ""
    field_of_study: str = Field(default="", validation_alias=AliasChoices("field_of_study", "fieldOfStudy", "field"))
    institution: str = Field(default="", validation_alias=AliasChoices("institution", "school", "university"))
    graduation_date: str = Field(
        default="", validation_alias=AliasChoices("graduation_date", "graduationDate", "end_date", "endDate")
    )


class RawTextContent(BaseModel):
    kind: Literal["raw_text"] = "raw_text"
    raw_text: str = Field(min_length=1)


class StructuredContent(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    kind: Literal["structured"] = "structured"
    personal_info: PersonalInfo = Field(
        default_factory=PersonalInfo, validation_alias=AliasChoices("personal_info", "personalInfo")
    )
    summary: str = Field(default="", validation_alias=AliasChoices("summary", "professional_summary", "profile"))
    experience: list[ExperienceEntry] = Field(
        default_factory=list, validation_alias=AliasChoices("experience", "work_experience", "workExperience")
    )
    education: list[EducationEntry] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    certifications: list[str] = Field(default_factory=list)

    @field_validator("summary", mode="before")
    @classmethod
    def _join_summary(cls, value: Any) -> Any:
        return _join_text(value)

    @field_validator("experience", mode="before")
    @classmethod
    def _experience_items(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list):
            return [{"description": item} if isinstance(item, str) else item for item in value]
        return value

    @field_validator("education", mode="before")
    @classmethod
    def _education_items(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list):
            return [{"degree": item} if isinstance(item, str) else item for item in value]
        return value

    @field_validator("skills", "certifications", mode="before")
    @classmethod
    def _named_items(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, list):
            names: list[Any] = []
            for item in value:
                if isinstance(item, dict):
                    names.append(item.get("name", item.get("title")))
                else:
                    names.append(item)
            return names
        return value


class NormalizedCV(BaseModel):
    kind: CVContentKind
    text: str
    sections: list[str] = Field(default_factory=list)
