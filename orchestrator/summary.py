"""
User-facing wrap-up for a finished turn: the chat-panel summary, suggested
follow-up prompts and the before/after record of what a chat turn changed.
"""

from __future__ import annotations

import re
from typing import Any, Optional, Sequence

from claims.fee_schedule import finding_revenue_impact, format_usd, revenue_at_risk, total_claim_value
from claims.models import Claim

ANALYSIS_DEFAULT_PROMPTS = [
    "Walk me through the findings",
    "Show the biggest risks",
    "Export the claim",
]
CHAT_DEFAULT_PROMPTS = [
    "What else should I check?",
    "Export the claim",
]

_SEVERITY_TAGS = {
    "critical": "**Critical**",
    "warning": "**Warning**",
    "opportunity": "**Opportunity**",
}

# "- Do this", "* Do this", "• "Do this""
_BULLET = re.compile(r"^[-•*]\s*[\"“”]?(.+?)[\"“”]?\s*$")
_TAIL_LINES = 6
_MAX_PROMPTS = 4
_MIN_PROMPTS = 2


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


def build_chat_summary(claim: Claim) -> str:
    """Short chat-panel summary of a freshly built claim."""
    open_findings = claim.open_findings()
    lines_count = _plural(len(claim.line_items), "line item")

    if not open_findings:
        billed = format_usd(total_claim_value(claim))
        lines = [f"Claim looks clean: **{lines_count}** ({billed}), no issues found."]
    elif any(f.severity == "critical" for f in open_findings):
        lines = [
            f"Heads up, found **{_plural(len(open_findings), 'issue')}** across {lines_count}. "
            "Here's the quick read:"
        ]
    else:
        lines = [f"{lines_count} built. A few things to look at:"]

    for f in open_findings[:3]:
        impact = finding_revenue_impact(f, claim.line_items)
        at_risk = f" ({format_usd(impact)} at risk)" if impact else ""
        lines.append(f"- {_SEVERITY_TAGS.get(f.severity, '**Info**')}: {f.title}{at_risk}")
    if len(open_findings) > 3:
        lines.append(f"- Plus {len(open_findings) - 3} more in the findings panel.")

    return "\n".join(lines)


def extract_suggested_prompts(text: str, defaults: Sequence[str]) -> list[str]:
    """Bullet lines near the end of the narration, else ``defaults``."""
    lines = [line.strip() for line in (text or "").split("\n") if line.strip()]
    prompts = []
    for line in lines[-_TAIL_LINES:]:
        match = _BULLET.match(line)
        if match and 3 < len(match.group(1)) < 80:
            prompts.append(match.group(1))
    if len(prompts) >= _MIN_PROMPTS:
        return prompts[:_MAX_PROMPTS]
    return list(defaults)


def choose_suggested_prompts(tool_prompts: Sequence[str], narration: str, defaults: Sequence[str]) -> list[str]:
    """Prefer what suggest_next_actions produced; fall back to the narration, then defaults."""
    if len(tool_prompts) >= _MIN_PROMPTS:
        return list(tool_prompts)[:_MAX_PROMPTS]
    return extract_suggested_prompts(narration, defaults)


def _describe_change(before: Optional[Claim], after: Claim) -> str:
    if before is None:
        return f"Built claim with {_plural(len(after.line_items), 'line item')}"

    parts = []
    before_lines = {li.line_number: li for li in before.line_items}
    after_lines = {li.line_number: li for li in after.line_items}
    for n in sorted(after_lines.keys() - before_lines.keys()):
        parts.append(f"Added line {n} ({after_lines[n].cpt})")
    for n in sorted(before_lines.keys() - after_lines.keys()):
        parts.append(f"Removed line {n} ({before_lines[n].cpt})")
    for n in sorted(after_lines.keys() & before_lines.keys()):
        if after_lines[n] != before_lines[n]:
            parts.append(f"Updated line {n}")

    before_findings = {f.id: f for f in before.findings}
    added = [f for f in after.findings if f.id not in before_findings]
    resolved = [
        f for f in after.findings
        if f.resolved and f.id in before_findings and not before_findings[f.id].resolved
    ]
    if added:
        parts.append(f"Added {_plural(len(added), 'finding')}")
    if resolved:
        parts.append(f"Resolved {_plural(len(resolved), 'finding')}")
    if after.risk_score != before.risk_score:
        parts.append(f"Risk score {before.risk_score:g} → {after.risk_score:g}")

    return "; ".join(parts) or "Updated claim details"


def summarize_claim_change(before: Optional[Claim], after: Optional[Claim]) -> Optional[dict[str, Any]]:
    """Before/after record for a chat turn, or None when the claim did not change."""
    if after is None or before == after:
        return None
    return {
        "description": _describe_change(before, after),
        "riskBefore": before.risk_score if before is not None else 0,
        "riskAfter": after.risk_score,
        "revenueBefore": revenue_at_risk(before) if before is not None else 0,
        "revenueAfter": revenue_at_risk(after),
    }
