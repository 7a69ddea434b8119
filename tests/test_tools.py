"""Tests for the tool catalogue the agent calls."""

import pytest

from agents.tools import ToolContext, make_tools
from claims.aggregate import ClaimAggregate


@pytest.fixture
def results():
    return []


@pytest.fixture
def context(reference, results):
    return ToolContext(
        aggregate=ClaimAggregate(),
        reference=reference,
        on_tool_result=lambda name, summary: results.append((name, summary)),
    )


@pytest.fixture
def tools(context):
    return {t.name: t for t in make_tools(context)}


def test_catalogue_is_fixed(tools):
    assert sorted(tools) == [
        "add_highlights",
        "check_age_sex",
        "lookup_icd10",
        "search_icd10",
        "suggest_next_actions",
        "update_claim",
    ]


class TestReferenceTools:
    @pytest.mark.asyncio
    async def test_search_returns_billable_codes(self, tools, results, reference):
        text = await tools["search_icd10"].ainvoke({"query": "back pain"})

        assert text == "M54.50 - Low back pain, unspecified [billable: true]"
        assert results == [("search_icd10", "1 result: M54.50")]
        assert reference.searches == [("back pain", 10, True)]

    @pytest.mark.asyncio
    async def test_search_can_include_non_billable(self, tools, results):
        await tools["search_icd10"].ainvoke({"query": "back pain", "billable_only": False})
        assert results == [("search_icd10", "2 results: M54.50, M54.5")]

    @pytest.mark.asyncio
    async def test_search_no_results(self, tools, results):
        text = await tools["search_icd10"].ainvoke({"query": "zebra bite"})
        assert text == 'No ICD-10 codes found for "zebra bite"'
        assert results == [("search_icd10", text)]

    @pytest.mark.asyncio
    async def test_search_error_goes_back_as_text(self, tools, results, reference):
        def broken(*args, **kwargs):
            raise RuntimeError("index offline")

        reference.search = broken
        text = await tools["search_icd10"].ainvoke({"query": "knee"})
        assert text == "Error: index offline"
        assert results == [("search_icd10", "Error: index offline")]

    @pytest.mark.asyncio
    async def test_lookup_found(self, tools, results):
        text = await tools["lookup_icd10"].ainvoke({"code": "e11.9"})
        assert text.startswith("E11.9 - Type 2 diabetes mellitus without complications")
        assert "Billable: true" in text
        assert results[0][1].startswith("E11.9 - ")

    @pytest.mark.asyncio
    async def test_lookup_missing(self, tools, results):
        text = await tools["lookup_icd10"].ainvoke({"code": "X99.9"})
        assert text == 'Code "X99.9" not found in ICD-10-CM database.'


class TestCheckAgeSex:
    @pytest.mark.asyncio
    async def test_clean(self, tools, results):
        text = await tools["check_age_sex"].ainvoke(
            {"code": "99214", "code_type": "cpt", "patient_age": 45, "patient_sex": "M"}
        )
        assert text == "No age/sex issues found for 99214 (M, age 45)."
        assert results == [("check_age_sex", text)]

    @pytest.mark.asyncio
    async def test_issues(self, tools, results):
        text = await tools["check_age_sex"].ainvoke(
            {"code": "77067", "code_type": "cpt", "patient_age": 30, "patient_sex": "M"}
        )
        assert text.startswith("ISSUES for 77067 (M, age 30):\n- ")
        assert results == [("check_age_sex", "1 issue for 77067")]


class TestUpdateClaim:
    @pytest.mark.asyncio
    async def test_set_then_add_finding(self, tools, context, results, claim_payload, finding_payload):
        text = await tools["update_claim"].ainvoke({"action": "set", "claim": claim_payload})
        assert text == "Claim updated (set). Current state: 2 line items, 0 findings, risk score: 0"

        await tools["update_claim"].ainvoke({"action": "add_finding", "finding": finding_payload})
        assert context.aggregate.claim.finding("f1").related_line_number == 2
        assert results[-1] == ("update_claim", "Claim updated (add_finding). 2 line items, 1 findings, risk: 0")

    @pytest.mark.asyncio
    async def test_rejection_is_returned_to_agent(self, tools, context, results):
        text = await tools["update_claim"].ainvoke({"action": "remove_line_item", "line_number": 1})

        assert text.startswith("Error: No claim exists yet")
        assert context.aggregate.claim is None
        assert results[0][0] == "update_claim"
        assert results[0][1].startswith("Rejected remove_line_item: ")

    @pytest.mark.asyncio
    async def test_missing_field_for_action(self, tools, claim_payload, results):
        await tools["update_claim"].ainvoke({"action": "set", "claim": claim_payload})
        text = await tools["update_claim"].ainvoke({"action": "set_risk_score"})
        assert text.startswith("Error: Invalid 'set_risk_score' arguments")
        assert results[-1][1].startswith("Rejected set_risk_score: ")

    @pytest.mark.asyncio
    async def test_unknown_action_is_reported(self, tools, context, results):
        text = await tools["update_claim"].ainvoke({"action": "delete_claim"})

        assert text.startswith("Error: Unknown action 'delete_claim'")
        assert context.aggregate.claim is None
        assert len(results) == 1
        assert results[0][1].startswith("Rejected delete_claim: Unknown action 'delete_claim'")

    @pytest.mark.asyncio
    async def test_wrongly_typed_field_is_reported(self, tools, context, results):
        text = await tools["update_claim"].ainvoke({"action": "set", "claim": "not a claim"})

        assert text.startswith("Error: invalid arguments for update_claim: claim: ")
        assert context.aggregate.claim is None
        assert len(results) == 1
        assert results[0][0] == "update_claim"
        assert results[0][1].startswith("Invalid arguments: claim: ")


class TestHighlightsAndSuggestions:
    @pytest.mark.asyncio
    async def test_highlights_stored_and_reported(self, reference, results):
        seen = []
        context = ToolContext(
            aggregate=ClaimAggregate(),
            reference=reference,
            on_tool_result=lambda name, summary: results.append((name, summary)),
            on_highlights=seen.append,
        )
        tools = {t.name: t for t in make_tools(context)}
        highlight = {
            "id": "h1",
            "original_text": "low back pain",
            "code": "M54.50",
            "type": "icd10",
            "confidence": 0.9,
            "notes": "Documented chief complaint.",
            "alternatives": [{"code": "M54.59", "description": "Other low back pain"}],
        }

        text = await tools["add_highlights"].ainvoke({"highlights": [highlight]})

        assert text == "Stored 1 highlight mappings."
        assert [h.code for h in context.highlights] == ["M54.50"]
        assert len(seen) == 1
        assert results == [("add_highlights", text)]

    @pytest.mark.asyncio
    async def test_highlights_not_collected_on_chat(self, reference):
        context = ToolContext(aggregate=ClaimAggregate(), reference=reference, collect_highlights=False)
        tools = {t.name: t for t in make_tools(context)}
        highlight = {
            "id": "h1",
            "original_text": "x",
            "code": "I10",
            "type": "icd10",
            "confidence": 1,
            "notes": "n",
        }
        await tools["add_highlights"].ainvoke({"highlights": [highlight]})
        assert context.highlights == []

    @pytest.mark.asyncio
    async def test_suggest_next_actions(self, tools, context):
        text = await tools["suggest_next_actions"].ainvoke({"actions": ["Export the claim", "Add modifier 25"]})
        assert text == "Suggested 2 next actions."
        assert context.suggested_prompts == ["Export the claim", "Add modifier 25"]

    @pytest.mark.asyncio
    async def test_suggest_next_actions_bounds(self, tools, context, results):
        text = await tools["suggest_next_actions"].ainvoke({"actions": ["Only one"]})

        assert text.startswith("Error: invalid arguments for suggest_next_actions: actions: ")
        assert context.suggested_prompts == []
        assert results[0][0] == "suggest_next_actions"
        assert results[0][1].startswith("Invalid arguments: actions: ")
