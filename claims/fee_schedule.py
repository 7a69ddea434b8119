"""
CY 2024 Medicare Physician Fee Schedule lookups (national averages) and the
revenue figures derived from them.

Source: cms.gov/medicare/payment/fee-schedules
"""

from __future__ import annotations

from claims.models import Claim, Finding, LineItem

MEDICARE_FEE_SCHEDULE: dict[str, int] = {
    "99213": 92,
    "99214": 131,
    "72070": 31,
    "73562": 33,
    "11102": 107,
    "11103": 63,
    "11200": 78,
    "20610": 72,
    "77067": 150,
}


def get_fee(cpt: str) -> int:
    """Per-unit fee for a CPT code; 0 when the code is not in the schedule."""
    return MEDICARE_FEE_SCHEDULE.get(cpt.strip(), 0)


def line_item_fee(item: LineItem) -> int:
    return get_fee(item.cpt) * item.units


def total_claim_value(claim: Claim) -> int:
    return sum(line_item_fee(item) for item in claim.line_items)


def revenue_at_risk(claim: Claim) -> int:
    """Sum of fees for line items referenced by at least one unresolved finding."""
    flagged = {
        f.related_line_number
        for f in claim.findings
        if not f.resolved and f.related_line_number is not None
    }
    return sum(line_item_fee(item) for item in claim.line_items if item.line_number in flagged)


def finding_revenue_impact(finding: Finding, line_items: list[LineItem]) -> int:
    if finding.related_line_number is None:
        return 0
    for item in line_items:
        if item.line_number == finding.related_line_number:
            return line_item_fee(item)
    return 0


def format_usd(amount: float) -> str:
    """Whole-dollar USD, e.g. ``$1,267``."""
    return f"${amount:,.0f}"
