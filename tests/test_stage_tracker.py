"""Tests for the pipeline stage tracker."""

from orchestrator.stage_tracker import (
    MUTATION_STAGE_TRIGGERS,
    STAGE_LABELS,
    TOOL_STAGE_TRIGGERS,
    StageTracker,
)


def _tracker():
    seen = []
    return StageTracker(lambda stage, label: seen.append((stage, label))), seen


def test_advances_forward_only():
    tracker, seen = _tracker()
    assert tracker.advance(1)
    assert tracker.advance(3)
    assert not tracker.advance(2)
    assert not tracker.advance(3)
    assert tracker.stage == 3
    assert seen == [(1, "Extracting diagnoses..."), (3, "Building claim...")]


def test_bounded_to_five():
    tracker, seen = _tracker()
    assert not tracker.advance(6)
    assert tracker.advance(5)
    assert seen == [(5, "Complete")]


def test_tool_triggers():
    tracker, seen = _tracker()
    tracker.advance(1)
    tracker.observe_tool_start("search_icd10")
    tracker.observe_tool_start("lookup_icd10")
    tracker.observe_tool_start("add_highlights")
    tracker.observe_tool_start("check_age_sex")
    assert [s for s, _ in seen] == [1, 2, 4]


def test_mutation_triggers():
    tracker, seen = _tracker()
    tracker.advance(2)
    tracker.observe_mutation("set")
    tracker.observe_mutation("set")
    tracker.observe_mutation("add_line_item")
    tracker.observe_mutation("add_finding")
    tracker.observe_mutation("set_risk_score")
    assert [s for s, _ in seen] == [2, 3, 4]


def test_late_trigger_absorbed():
    tracker, seen = _tracker()
    tracker.observe_mutation("add_finding")
    tracker.observe_tool_start("search_icd10")
    tracker.observe_mutation("set")
    assert [s for s, _ in seen] == [4]


def test_sequence_is_monotonic_for_any_trigger_order():
    triggers = list(TOOL_STAGE_TRIGGERS) + list(MUTATION_STAGE_TRIGGERS)
    tracker, seen = _tracker()
    tracker.advance(1)
    for name in reversed(triggers):
        if name in TOOL_STAGE_TRIGGERS:
            tracker.observe_tool_start(name)
        else:
            tracker.observe_mutation(name)
    tracker.advance(5)
    stages = [s for s, _ in seen]
    assert stages == sorted(stages)
    assert all(1 <= s <= 5 for s in stages)


def test_tables_never_reach_completion():
    assert 5 not in TOOL_STAGE_TRIGGERS.values()
    assert 5 not in MUTATION_STAGE_TRIGGERS.values()
    assert set(STAGE_LABELS) == {1, 2, 3, 4, 5}
