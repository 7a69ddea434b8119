"""
Claim Aggregate: the single owner of the in-flight claim for one agent turn.

The only way to change the claim is ``ClaimAggregate.apply(mutation)``.
Each successful mutation builds a brand-new, fully validated ``Claim`` and then
notifies the ``on_change`` listener with ``(mutation, previous, current)``.
A rejected mutation raises ``ClaimMutationError`` and leaves the claim untouched.

Mutations are a closed tagged union keyed by ``action``:

    set               full claim object; replaces whatever was there
    add_line_item     line item; line number must be new
    remove_line_item  line number; no-op if absent
    update_line_item  line number + partial fields; fails if absent
    add_finding       finding; id must be new
    resolve_finding   finding id + reason; fails if absent or already resolved
    set_risk_score    score in [0, 100]
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from claims.models import Claim, Finding, LineItem

logger = logging.getLogger(__name__)


class ClaimMutationError(ValueError):
    """A mutation was rejected. The message is safe to hand back to the agent."""


# ---------------------------------------------------------------------------
# Mutation variants
# ---------------------------------------------------------------------------


class _Mutation(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class SetClaim(_Mutation):
    action: Literal["set"] = "set"
    claim: Claim


class AddLineItem(_Mutation):
    action: Literal["add_line_item"] = "add_line_item"
    line_item: LineItem


class RemoveLineItem(_Mutation):
    action: Literal["remove_line_item"] = "remove_line_item"
    line_number: int


class UpdateLineItem(_Mutation):
    action: Literal["update_line_item"] = "update_line_item"
    line_number: int
    line_item: dict[str, Any] = Field(min_length=1)


class AddFinding(_Mutation):
    action: Literal["add_finding"] = "add_finding"
    finding: Finding


class ResolveFinding(_Mutation):
    action: Literal["resolve_finding"] = "resolve_finding"
    finding_id: str = Field(min_length=1)
    resolved_reason: str = Field(min_length=1)


class SetRiskScore(_Mutation):
    action: Literal["set_risk_score"] = "set_risk_score"
    risk_score: float = Field(ge=0, le=100)


ClaimMutation = Annotated[
    Union[
        SetClaim,
        AddLineItem,
        RemoveLineItem,
        UpdateLineItem,
        AddFinding,
        ResolveFinding,
        SetRiskScore,
    ],
    Field(discriminator="action"),
]

MUTATION_ACTIONS: tuple[str, ...] = (
    "set",
    "add_line_item",
    "remove_line_item",
    "update_line_item",
    "add_finding",
    "resolve_finding",
    "set_risk_score",
)

_mutation_adapter: TypeAdapter[ClaimMutation] = TypeAdapter(ClaimMutation)

# Accept both attribute names and camelCase aliases in partial line-item updates.
_LINE_ITEM_KEYS: dict[str, str] = {}
for _name, _info in LineItem.model_fields.items():
    _LINE_ITEM_KEYS[_name] = _info.alias or _name
    _LINE_ITEM_KEYS[_info.alias or _name] = _info.alias or _name


def describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def parse_mutation(payload: dict[str, Any]) -> ClaimMutation:
    """Validate a raw tool payload into one mutation variant.

    Keys whose value is None are dropped first, so a flat tool schema with
    every field optional maps cleanly onto the variant for its action.

    Raises:
        ClaimMutationError: unknown action, missing or malformed fields.
    """
    cleaned = {k: v for k, v in payload.items() if v is not None}
    action = cleaned.get("action")
    if action not in MUTATION_ACTIONS:
        raise ClaimMutationError(
            f"Unknown action {action!r}; expected one of {', '.join(MUTATION_ACTIONS)}"
        )
    try:
        return _mutation_adapter.validate_python(cleaned)
    except ValidationError as exc:
        raise ClaimMutationError(f"Invalid '{action}' arguments: {describe_validation_error(exc)}") from exc


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------

ChangeListener = Callable[[ClaimMutation, Optional[Claim], Claim], None]


class ClaimAggregate:
    """Owns one claim for the duration of a turn. Single writer, no locking."""

    def __init__(self, claim: Optional[Claim] = None, on_change: Optional[ChangeListener] = None) -> None:
        self._claim = claim
        self._on_change = on_change
        self.applied = 0

    @property
    def claim(self) -> Optional[Claim]:
        return self._claim

    def apply(self, mutation: ClaimMutation) -> Claim:
        previous = self._claim
        if previous is None and not isinstance(mutation, SetClaim):
            raise ClaimMutationError(
                f"No claim exists yet; '{mutation.action}' requires a prior 'set'"
            )

        handler = self._handlers[mutation.action]
        current = handler(self, previous, mutation)

        self._claim = current
        self.applied += 1
        logger.debug(
            "claim mutation applied: action=%s lines=%d findings=%d risk=%s",
            mutation.action,
            len(current.line_items),
            len(current.findings),
            current.risk_score,
        )
        if self._on_change is not None:
            self._on_change(mutation, previous, current)
        return current

    def apply_payload(self, payload: dict[str, Any]) -> Claim:
        """Parse a raw payload and apply it. Raises ClaimMutationError."""
        return self.apply(parse_mutation(payload))

    # ---- handlers ----------------------------------------------------

    @staticmethod
    def _rebuild(claim: Claim, **changes: Any) -> Claim:
        data = claim.model_dump(by_alias=False)
        data.update(changes)
        try:
            return Claim.model_validate(data)
        except ValidationError as exc:
            raise ClaimMutationError(describe_validation_error(exc)) from exc

    def _set(self, previous: Optional[Claim], m: SetClaim) -> Claim:
        # Re-validate so the stored snapshot never shares structure with the payload.
        return Claim.model_validate(m.claim.model_dump(by_alias=False))

    def _add_line_item(self, claim: Claim, m: AddLineItem) -> Claim:
        if claim.line_item(m.line_item.line_number) is not None:
            raise ClaimMutationError(
                f"Line number {m.line_item.line_number} already exists"
            )
        items = [li.model_dump() for li in claim.line_items] + [m.line_item.model_dump()]
        return self._rebuild(claim, line_items=items)

    def _remove_line_item(self, claim: Claim, m: RemoveLineItem) -> Claim:
        items = [li.model_dump() for li in claim.line_items if li.line_number != m.line_number]
        return self._rebuild(claim, line_items=items)

    def _update_line_item(self, claim: Claim, m: UpdateLineItem) -> Claim:
        existing = claim.line_item(m.line_number)
        if existing is None:
            raise ClaimMutationError(f"Line number {m.line_number} not found")

        unknown = sorted(k for k in m.line_item if k not in _LINE_ITEM_KEYS)
        if unknown:
            raise ClaimMutationError(f"Unknown line item fields: {', '.join(unknown)}")

        merged = existing.model_dump(by_alias=True)
        for key, value in m.line_item.items():
            merged[_LINE_ITEM_KEYS[key]] = value
        try:
            updated = LineItem.model_validate(merged)
        except ValidationError as exc:
            raise ClaimMutationError(f"Invalid line item update: {describe_validation_error(exc)}") from exc

        if updated.line_number != m.line_number and claim.line_item(updated.line_number) is not None:
            raise ClaimMutationError(f"Line number {updated.line_number} already exists")

        items = [
            updated.model_dump() if li.line_number == m.line_number else li.model_dump()
            for li in claim.line_items
        ]
        return self._rebuild(claim, line_items=items)

    def _add_finding(self, claim: Claim, m: AddFinding) -> Claim:
        if claim.finding(m.finding.id) is not None:
            raise ClaimMutationError(f"Finding id {m.finding.id!r} already exists")
        findings = [f.model_dump() for f in claim.findings] + [m.finding.model_dump()]
        return self._rebuild(claim, findings=findings)

    def _resolve_finding(self, claim: Claim, m: ResolveFinding) -> Claim:
        target = claim.finding(m.finding_id)
        if target is None:
            raise ClaimMutationError(f"Finding id {m.finding_id!r} not found")
        if target.resolved:
            raise ClaimMutationError(f"Finding id {m.finding_id!r} is already resolved")

        findings = []
        for f in claim.findings:
            data = f.model_dump()
            if f.id == m.finding_id:
                data.update(resolved=True, resolved_reason=m.resolved_reason)
            findings.append(data)
        return self._rebuild(claim, findings=findings)

    def _set_risk_score(self, claim: Claim, m: SetRiskScore) -> Claim:
        return self._rebuild(claim, risk_score=m.risk_score)

    _handlers: dict[str, Callable[..., Claim]] = {
        "set": _set,
        "add_line_item": _add_line_item,
        "remove_line_item": _remove_line_item,
        "update_line_item": _update_line_item,
        "add_finding": _add_finding,
        "resolve_finding": _resolve_finding,
        "set_risk_score": _set_risk_score,
    }
