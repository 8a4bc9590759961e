"""Domain models for coverage search and policy extraction.

Tool inputs (SearchQuery and friends) double as the argument schemas shown
to the reasoning engine, so their field descriptions are written for the
model, not for developers.
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class SourceType(enum.StrEnum):
    NCD = "NCD"
    LCD = "LCD"
    ARTICLE = "Article"
    CARELON = "Carelon"
    EVOLENT = "Evolent"


# ---------------------------------------------------------------------------
# Tool inputs
# ---------------------------------------------------------------------------


class StateRef(BaseModel):
    """A U.S. state as the CMS Coverage API identifies it."""

    state_id: int | None = Field(
        default=None,
        description="Numeric CMS state id. Omit it if unknown; it is resolved from the name.",
    )
    description: str = Field(description="Full state name, e.g. 'Florida' or 'Illinois'.")


class SearchQuery(BaseModel):
    query: str = Field(
        min_length=1,
        description="The disease, treatment, or policy number to search for, e.g. 'diabetes (type 2)'.",
    )
    state: StateRef | None = Field(
        default=None,
        description="Patient's U.S. state, used to filter local coverage results.",
    )

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be empty")
        return value

    @field_validator("state", mode="before")
    @classmethod
    def _state_from_name(cls, value: object) -> object:
        if isinstance(value, str):
            return {"description": value}
        return value


class StateScopedQuery(SearchQuery):
    state: StateRef = Field(
        description="Patient's U.S. state. Local coverage policies are published per state.",
    )


class GuidelineQuery(BaseModel):
    query: str = Field(
        min_length=1,
        description="The disease or treatment to search for in the guideline library.",
    )

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be empty")
        return value


class PolicyUrlInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    policy_url: str = Field(
        alias="policyUrl",
        description="Absolute URL of the policy document (NCD, LCD, Article or guideline page).",
    )

    @field_validator("policy_url")
    @classmethod
    def _absolute_http_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("policyUrl must be an absolute http(s) URL")
        return value


# ---------------------------------------------------------------------------
# Search output
# ---------------------------------------------------------------------------


class CoverageReference(BaseModel):
    """A candidate policy document returned by one of the search tools."""

    title: str
    display_id: str
    source_type: SourceType
    url: str
    effective_date: date | None = None
    contractor: str = ""
    status: str = ""
    last_updated: str = ""

    @field_validator("url")
    @classmethod
    def _absolute_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"reference URL must be absolute: {value!r}")
        return value

    @field_validator("effective_date", mode="before")
    @classmethod
    def _lenient_date(cls, value: object) -> object:
        if value in (None, ""):
            return None
        if isinstance(value, str):
            return parse_api_date(value)
        return value


def parse_api_date(raw: str) -> date | None:
    """Parse the date formats the coverage APIs emit; None when unrecognised."""
    raw = raw.strip()
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%SZ"):
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    return None


# ---------------------------------------------------------------------------
# Structured extraction
# ---------------------------------------------------------------------------


class PriorAuthRequirement(enum.StrEnum):
    YES = "YES"
    NO = "NO"
    CONDITIONAL = "CONDITIONAL"
    UNKNOWN = "UNKNOWN"


class CodeContext(enum.StrEnum):
    COVERED = "covered"
    EXCLUDED = "excluded"
    UNSPECIFIED = "unspecified"


class CodeEntry(BaseModel):
    code: str
    description: str = ""
    context: CodeContext = CodeContext.UNSPECIFIED

    @field_validator("context", mode="before")
    @classmethod
    def _closed_vocabulary(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in {c.value for c in CodeContext}:
                return normalized
        return CodeContext.UNSPECIFIED


class ExtractedPolicyDetails(BaseModel):
    """Machine-readable summary of one policy document.

    Serialized with camelCase keys (priorAuthRequired, icd10Codes, ...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    prior_auth_required: PriorAuthRequirement = PriorAuthRequirement.UNKNOWN
    medical_necessity_criteria: list[str] = Field(default_factory=list)
    icd10_codes: list[CodeEntry] = Field(default_factory=list)
    cpt_codes: list[CodeEntry] = Field(default_factory=list)
    required_documentation: list[str] = Field(default_factory=list)
    limitations_exclusions: list[str] = Field(default_factory=list)
    summary: str = ""

    @field_validator("prior_auth_required", mode="before")
    @classmethod
    def _unknown_when_ambiguous(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip().upper()
            if normalized in {p.value for p in PriorAuthRequirement}:
                return normalized
        return PriorAuthRequirement.UNKNOWN

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ExtractionFailure(BaseModel):
    """Error envelope returned instead of ExtractedPolicyDetails."""

    error: str
    details: str = ""

    def to_json(self) -> str:
        return self.model_dump_json()
