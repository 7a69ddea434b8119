"""
Outbound events emitted by the session orchestrator, in turn order.

Each event serialises with ``to_wire()`` to ``{"type": ..., <camelCase fields>}``.
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from claims.models import CamelModel


class StageChanged(CamelModel):
    type: Literal["stage"] = "stage"
    stage: int
    label: str


class NarrationDelta(CamelModel):
    type: Literal["narration_delta"] = "narration_delta"
    text: str


class ToolInvocationStarted(CamelModel):
    type: Literal["tool_invocation_started"] = "tool_invocation_started"
    name: str


class ToolInvocationProgress(CamelModel):
    type: Literal["tool_invocation_progress"] = "tool_invocation_progress"
    name: str
    partial_query_text: str


class ToolInvocationResult(CamelModel):
    type: Literal["tool_invocation_result"] = "tool_invocation_result"
    name: str
    result_summary: str


class ClaimReplaced(CamelModel):
    type: Literal["claim_replaced"] = "claim_replaced"
    claim: dict[str, Any]


class FindingAdded(CamelModel):
    type: Literal["finding_added"] = "finding_added"
    finding: dict[str, Any]


class FindingResolved(CamelModel):
    type: Literal["finding_resolved"] = "finding_resolved"
    finding_id: str
    reason: Optional[str] = None


class RiskScoreChanged(CamelModel):
    type: Literal["risk_score_changed"] = "risk_score_changed"
    score: float


class EvidenceHighlights(CamelModel):
    type: Literal["evidence_highlights"] = "evidence_highlights"
    highlights: list[dict[str, Any]]


class TurnCompleted(CamelModel):
    type: Literal["turn_completed"] = "turn_completed"
    session_id: str
    final_claim: Optional[dict[str, Any]] = None
    summary_text: str
    suggested_follow_ups: list[str]
    highlights: Optional[list[dict[str, Any]]] = None

    def to_wire(self) -> dict:
        data = super().to_wire()
        if self.highlights is None:
            data.pop("highlights")
        return data


class TurnFailed(CamelModel):
    type: Literal["turn_failed"] = "turn_failed"
    message: str


TurnEvent = Union[
    StageChanged,
    NarrationDelta,
    ToolInvocationStarted,
    ToolInvocationProgress,
    ToolInvocationResult,
    ClaimReplaced,
    FindingAdded,
    FindingResolved,
    RiskScoreChanged,
    EvidenceHighlights,
    TurnCompleted,
    TurnFailed,
]
