"""
Claim data model.

Every model here is an immutable snapshot. Changes are made by building a new
instance (see claims/aggregate.py), never by assigning to fields.

Wire format is camelCase (lineItems, riskScore, relatedLineNumber, ...) because
that is what the agent writes and what the UI reads; Python code uses the
snake_case attribute names. Evidence highlights keep their snake_case keys.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

FindingSeverity = Literal["critical", "warning", "info", "opportunity"]
CodeType = Literal["icd10", "cpt"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> dict:
        """Serialise to the camelCase JSON shape used on the wire and in the DB."""
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Claim
# ---------------------------------------------------------------------------


class PatientDemographics(CamelModel):
    sex: Literal["M", "F"]
    age: Optional[int] = Field(default=None, ge=0, le=130)
    date_of_birth: Optional[str] = None


class LineItem(CamelModel):
    """One billable unit. icd10 is ordered primary-first, most specific first."""

    line_number: int = Field(ge=1)
    cpt: str = Field(min_length=1)
    description: str = ""
    modifiers: list[str] = Field(default_factory=list)
    icd10: list[str] = Field(min_length=1)
    units: int = Field(default=1, ge=1)
    coding_rationale: str = ""
    sources: list[str] = Field(default_factory=list)


class Finding(CamelModel):
    id: str = Field(min_length=1)
    severity: FindingSeverity
    title: str
    description: str
    recommendation: Optional[str] = None
    source_url: Optional[str] = None
    related_line_number: Optional[int] = None
    resolved: bool = False
    resolved_reason: Optional[str] = None


class Claim(CamelModel):
    claim_id: str
    date_of_service: str
    patient: PatientDemographics
    line_items: list[LineItem] = Field(default_factory=list)
    risk_score: float = Field(default=0, ge=0, le=100)
    findings: list[Finding] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_keys(self) -> "Claim":
        line_numbers = [item.line_number for item in self.line_items]
        duplicates = sorted({n for n in line_numbers if line_numbers.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate line numbers: {duplicates}")

        finding_ids = [f.id for f in self.findings]
        dup_ids = sorted({i for i in finding_ids if finding_ids.count(i) > 1})
        if dup_ids:
            raise ValueError(f"duplicate finding ids: {dup_ids}")
        return self

    def line_item(self, line_number: int) -> Optional[LineItem]:
        return next((li for li in self.line_items if li.line_number == line_number), None)

    def finding(self, finding_id: str) -> Optional[Finding]:
        return next((f for f in self.findings if f.id == finding_id), None)

    def open_findings(self) -> list[Finding]:
        return [f for f in self.findings if not f.resolved]


# ---------------------------------------------------------------------------
# Evidence highlights
# ---------------------------------------------------------------------------


class AlternativeCode(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    description: str


class NoteHighlight(BaseModel):
    """Maps a verbatim span of the clinical notes to the code it supports."""

    model_config = ConfigDict(frozen=True)

    id: str
    original_text: str = Field(min_length=1)
    code: str
    type: CodeType
    confidence: float = Field(ge=0, le=1)
    notes: str
    alternatives: list[AlternativeCode] = Field(default_factory=list)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json")
