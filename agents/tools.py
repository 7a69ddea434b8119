"""
Tool Contract Layer: the fixed catalogue of operations the billing agent may call.

    search_icd10          semantic ICD-10-CM search (reference index)
    lookup_icd10          exact ICD-10-CM lookup (reference index)
    check_age_sex         demographic plausibility rules (agents/demographics.py)
    update_claim          the claim mutation protocol (claims/aggregate.py)
    add_highlights        evidence spans from the notes to codes
    suggest_next_actions  2-4 follow-up actions for the user

Every tool returns plain text for the agent to reason over and reports a short
result summary through ``ToolContext.on_tool_result`` for the event feed.
Errors never escape a tool: a rejected mutation, a bad argument or a failing
lookup comes back to the agent as text so it can correct itself in the same turn.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional, Protocol

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, Field, ValidationError

from agents.demographics import check_age_sex
from claims.aggregate import MUTATION_ACTIONS, ClaimAggregate, ClaimMutationError, describe_validation_error
from claims.models import NoteHighlight

logger = logging.getLogger(__name__)

_SEARCH_LIMIT = 10


class ReferenceLookup(Protocol):
    def search(self, query: str, limit: int = 10, billable_only: bool = True) -> list[dict[str, Any]]: ...

    def lookup(self, code: str) -> Optional[dict[str, Any]]: ...


@dataclass
class ToolContext:
    """Everything the tools touch during one turn."""

    aggregate: ClaimAggregate
    reference: ReferenceLookup
    on_tool_result: Callable[[str, str], None] = lambda name, summary: None
    on_highlights: Callable[[list[NoteHighlight]], None] = lambda highlights: None
    collect_highlights: bool = True
    highlights: list[NoteHighlight] = field(default_factory=list)
    suggested_prompts: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Argument schemas (sent to the model as JSON schema)
# ---------------------------------------------------------------------------


class SearchIcd10Args(BaseModel):
    query: str = Field(description="Search query: a diagnosis, symptom, or condition name")
    billable_only: bool = Field(default=True, description="If true, only return billable codes")


class LookupIcd10Args(BaseModel):
    code: str = Field(description="ICD-10-CM code, with or without dot")


class CheckAgeSexArgs(BaseModel):
    code: str = Field(description="ICD-10 or CPT code to validate")
    code_type: Literal["icd10", "cpt"] = Field(description="Whether this is an ICD-10 or CPT code")
    patient_age: float = Field(description="Patient age in years")
    patient_sex: Literal["M", "F"] = Field(description="Patient sex")


class UpdateClaimArgs(BaseModel):
    # Free text: the action and the fields it needs are validated together by
    # the mutation protocol, so a bad action comes back as a tool result.
    action: str = Field(description="The mutation action: " + ", ".join(MUTATION_ACTIONS))
    claim: Optional[dict[str, Any]] = Field(
        default=None,
        description=(
            "Full claim object for 'set': {claimId, dateOfService, patient: {sex, age}, "
            "lineItems: [...], riskScore, findings: [...]}"
        ),
    )
    line_item: Optional[dict[str, Any]] = Field(
        default=None,
        description=(
            "Line item for 'add_line_item' ({lineNumber, cpt, description, modifiers, icd10, "
            "units, codingRationale, sources}) or the fields to change for 'update_line_item'"
        ),
    )
    line_number: Optional[int] = Field(default=None, description="Line number to remove or update")
    finding: Optional[dict[str, Any]] = Field(
        default=None,
        description=(
            "Finding for 'add_finding': {id, severity: critical|warning|info|opportunity, title, "
            "description, recommendation, sourceUrl, relatedLineNumber}"
        ),
    )
    finding_id: Optional[str] = Field(default=None, description="Finding id for 'resolve_finding'")
    resolved_reason: Optional[str] = Field(default=None, description="Why the finding was resolved")
    risk_score: Optional[float] = Field(default=None, description="New risk score 0-100 for 'set_risk_score'")


class AddHighlightsArgs(BaseModel):
    highlights: list[NoteHighlight] = Field(description="Array of code-to-text mappings")


class SuggestNextActionsArgs(BaseModel):
    actions: list[str] = Field(
        min_length=2,
        max_length=4,
        description="2-4 short imperative action phrases, e.g. 'Remove the mammography line item'",
    )


# ---------------------------------------------------------------------------
# Result formatting
# ---------------------------------------------------------------------------


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


def format_search_results(rows: list[dict[str, Any]]) -> str:
    return "\n".join(
        f"{r['code_dot']} - {r['long_desc']} [billable: {str(r['billable']).lower()}]" for r in rows
    )


def summarize_search(query: str, rows: list[dict[str, Any]]) -> str:
    if not rows:
        return f'No ICD-10 codes found for "{query}"'
    return f"{_plural(len(rows), 'result')}: {', '.join(r['code_dot'] for r in rows)}"


def summarize_claim(action: str, aggregate: ClaimAggregate) -> str:
    claim = aggregate.claim
    return (
        f"Claim updated ({action}). {len(claim.line_items)} line items, "
        f"{len(claim.findings)} findings, risk: {claim.risk_score:g}"
    )


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


def make_tools(context: ToolContext) -> list[StructuredTool]:
    """Build the tool catalogue bound to one turn's context."""

    def report(name: str, summary: str) -> None:
        context.on_tool_result(name, summary)

    def invalid_arguments(name: str) -> Callable[[ValidationError], str]:
        def handle(error: ValidationError) -> str:
            detail = describe_validation_error(error)
            logger.info("%s rejected its arguments: %s", name, detail)
            report(name, f"Invalid arguments: {detail}")
            return f"Error: invalid arguments for {name}: {detail}"

        return handle

    async def search_icd10(query: str, billable_only: bool = True) -> str:
        try:
            rows = await asyncio.to_thread(context.reference.search, query, _SEARCH_LIMIT, billable_only)
        except Exception as e:
            logger.exception("search_icd10 failed for %r", query)
            report("search_icd10", f"Error: {e}")
            return f"Error: {e}"

        summary = summarize_search(query, rows)
        report("search_icd10", summary)
        return format_search_results(rows) if rows else summary

    async def lookup_icd10(code: str) -> str:
        try:
            row = await asyncio.to_thread(context.reference.lookup, code)
        except Exception as e:
            logger.exception("lookup_icd10 failed for %r", code)
            report("lookup_icd10", f"Error: {e}")
            return f"Error: {e}"

        if row is None:
            msg = f'Code "{code}" not found in ICD-10-CM database.'
            report("lookup_icd10", msg)
            return msg

        billable = str(row["billable"]).lower()
        report("lookup_icd10", f"{row['code_dot']} - {row['short_desc']} [billable: {billable}]")
        return f"{row['code_dot']} - {row['long_desc']}\nShort: {row['short_desc']}\nBillable: {billable}"

    async def check_demographics(
        code: str,
        code_type: Literal["icd10", "cpt"],
        patient_age: float,
        patient_sex: Literal["M", "F"],
    ) -> str:
        issues = check_age_sex(code, code_type, patient_age, patient_sex)
        who = f"{patient_sex}, age {patient_age:g}"
        if not issues:
            msg = f"No age/sex issues found for {code} ({who})."
            report("check_age_sex", msg)
            return msg

        report("check_age_sex", f"{_plural(len(issues), 'issue')} for {code}")
        lines = "\n".join(f"- {issue}" for issue in issues)
        return f"ISSUES for {code} ({who}):\n{lines}"

    async def update_claim(action: str, **fields: Any) -> str:
        try:
            context.aggregate.apply_payload({"action": action, **fields})
        except ClaimMutationError as e:
            logger.info("update_claim rejected (%s): %s", action, e)
            report("update_claim", f"Rejected {action}: {e}")
            return f"Error: {e}"

        report("update_claim", summarize_claim(action, context.aggregate))
        claim = context.aggregate.claim
        return (
            f"Claim updated ({action}). Current state: {len(claim.line_items)} line items, "
            f"{len(claim.findings)} findings, risk score: {claim.risk_score:g}"
        )

    async def add_highlights(highlights: list[NoteHighlight]) -> str:
        highlights = [
            h if isinstance(h, NoteHighlight) else NoteHighlight.model_validate(h) for h in highlights
        ]
        if context.collect_highlights:
            context.highlights = list(highlights)
            context.on_highlights(context.highlights)
        msg = f"Stored {len(highlights)} highlight mappings."
        report("add_highlights", msg)
        return msg

    async def suggest_next_actions(actions: list[str]) -> str:
        context.suggested_prompts = [a.strip() for a in actions if a and a.strip()]
        return f"Suggested {len(context.suggested_prompts)} next actions."

    return [
        StructuredTool.from_function(
            coroutine=search_icd10,
            name="search_icd10",
            description=(
                "Search ICD-10-CM codes by keyword or phrase. Returns up to 10 matching codes with "
                "descriptions and billable status. Use this to find diagnosis codes from the notes."
            ),
            args_schema=SearchIcd10Args,
            handle_validation_error=invalid_arguments("search_icd10"),
        ),
        StructuredTool.from_function(
            coroutine=lookup_icd10,
            name="lookup_icd10",
            description=(
                "Look up a specific ICD-10-CM code, with or without a dot (e.g. 'M54.31' or 'M5431'). "
                "Returns the full description, billable status, and dotted form."
            ),
            args_schema=LookupIcd10Args,
            handle_validation_error=invalid_arguments("lookup_icd10"),
        ),
        StructuredTool.from_function(
            coroutine=check_demographics,
            name="check_age_sex",
            description=(
                "Validate an ICD-10 or CPT code against patient demographics. Checks for age/sex "
                "mismatches (pregnancy codes for male patients, perinatal codes for adults, "
                "mammography screening for males)."
            ),
            args_schema=CheckAgeSexArgs,
            handle_validation_error=invalid_arguments("check_age_sex"),
        ),
        StructuredTool.from_function(
            coroutine=update_claim,
            name="update_claim",
            description=(
                "Update the current claim. This is the ONLY way to modify the claim. Actions: "
                + ", ".join(MUTATION_ACTIONS)
                + ". Start with 'set' to create the claim. Always call this tool to change claim data."
            ),
            args_schema=UpdateClaimArgs,
            handle_validation_error=invalid_arguments("update_claim"),
        ),
        StructuredTool.from_function(
            coroutine=add_highlights,
            name="add_highlights",
            description=(
                "Map each extracted code back to the exact text span it came from in the clinical "
                "notes. Call this after coding and before building the claim."
            ),
            args_schema=AddHighlightsArgs,
            handle_validation_error=invalid_arguments("add_highlights"),
        ),
        StructuredTool.from_function(
            coroutine=suggest_next_actions,
            name="suggest_next_actions",
            description=(
                "Suggest 2-4 next actions the user might want to take. Call this as the final tool "
                "in every response. Each action is a short imperative phrase, never a question."
            ),
            args_schema=SuggestNextActionsArgs,
            handle_validation_error=invalid_arguments("suggest_next_actions"),
        ),
    ]
