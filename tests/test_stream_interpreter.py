"""Tests for the stream interpreter: narration dedup, tool previews, termination."""

import pytest

from agents.agent_session import (
    ConsolidatedMessage,
    ContentBlockStart,
    ContentBlockStop,
    InputJsonDelta,
    SessionInitialized,
    TextDelta,
    ToolInvocation,
    TurnResult,
)
from agents.stream_interpreter import StreamCallbacks, StreamInterpreter, extract_preview


class Recorder(StreamCallbacks):
    def __init__(self):
        self.calls = []

    def on_text(self, text):
        self.calls.append(("text", text))

    def on_tool_start(self, tool_name):
        self.calls.append(("start", tool_name))

    def on_tool_input(self, tool_name, extracted):
        self.calls.append(("input", tool_name, extracted))

    def on_tool_use(self, tool_name, tool_input):
        self.calls.append(("use", tool_name, tool_input))

    def on_error(self, message):
        self.calls.append(("error", message))


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def interpreter(recorder):
    return StreamInterpreter(recorder)


def _feed(interpreter, messages):
    return [interpreter.process(m) for m in messages]


class TestExtractPreview:
    @pytest.mark.parametrize(
        "partial, expected",
        [
            ('{"query":"bac', "bac"),
            ('{"query": "back pain"}', "back pain"),
            ('{"code":"M54.', "M54."),
            ('{"action":"add_fin', "add_fin"),
            ('{"query":"', None),
            ('{"qu', None),
            ("not json at all", None),
        ],
    )
    def test_truncation_tolerant(self, partial, expected):
        assert extract_preview(partial) == expected

    def test_query_wins_over_action(self):
        assert extract_preview('{"action":"set","query":"knee"') == "knee"


class TestNarration:
    def test_streamed_text_accumulates(self, interpreter, recorder):
        _feed(interpreter, [TextDelta("m1", "Hello "), TextDelta("m1", "world")])
        assert interpreter.narration == "Hello world"
        assert recorder.calls == [("text", "Hello "), ("text", "world")]

    def test_consolidated_text_not_duplicated_after_streaming(self, interpreter, recorder):
        _feed(
            interpreter,
            [
                TextDelta("m1", "Two line items."),
                ConsolidatedMessage("m1", text_blocks=["Two line items."]),
                ConsolidatedMessage("m1", text_blocks=["Two line items."]),
            ],
        )
        assert interpreter.narration == "Two line items."
        assert recorder.calls == [("text", "Two line items.")]

    def test_consolidated_text_used_when_nothing_streamed(self, interpreter, recorder):
        _feed(interpreter, [ConsolidatedMessage("m2", text_blocks=["Clean ", "claim."])])
        assert interpreter.narration == "Clean claim."
        assert recorder.calls == [("text", "Clean claim.")]

    def test_same_sentence_in_different_messages_is_kept(self, interpreter):
        _feed(
            interpreter,
            [
                TextDelta("m1", "Done."),
                ConsolidatedMessage("m1", text_blocks=["Done."]),
                ConsolidatedMessage("m2", text_blocks=["Done."]),
            ],
        )
        assert interpreter.narration == "Done.Done."

    def test_text_inside_tool_block_is_ignored(self, interpreter):
        _feed(
            interpreter,
            [
                ContentBlockStart("m1", "tool_use", "search_icd10"),
                TextDelta("m1", "should not appear"),
                ContentBlockStop("m1"),
                TextDelta("m1", "visible"),
            ],
        )
        assert interpreter.narration == "visible"


class TestToolLifecycle:
    def test_scenario_c_progress_then_authoritative_input(self, interpreter, recorder):
        _feed(
            interpreter,
            [
                ContentBlockStart("m1", "tool_use", "lookup"),
                InputJsonDelta("m1", '{"query":"bac'),
                InputJsonDelta("m1", 'k pain"}'),
                ContentBlockStop("m1"),
                ConsolidatedMessage(
                    "m1", tool_invocations=[ToolInvocation("t1", "lookup", {"query": "back pain"})]
                ),
            ],
        )
        assert recorder.calls == [
            ("start", "lookup"),
            ("input", "lookup", "bac"),
            ("input", "lookup", "back pain"),
            ("use", "lookup", {"query": "back pain"}),
        ]

    def test_unchanged_preview_not_repeated(self, interpreter, recorder):
        _feed(
            interpreter,
            [
                ContentBlockStart("m1", "tool_use", "update_claim"),
                InputJsonDelta("m1", '{"action":"set"'),
                InputJsonDelta("m1", ', "claim": {"claimId'),
            ],
        )
        assert recorder.calls == [("start", "update_claim"), ("input", "update_claim", "set")]

    def test_buffer_resets_on_block_boundary(self, interpreter, recorder):
        _feed(
            interpreter,
            [
                ContentBlockStart("m1", "tool_use", "search_icd10"),
                InputJsonDelta("m1", '{"query":"knee'),
                ContentBlockStop("m1"),
                ContentBlockStart("m1", "tool_use", "lookup_icd10"),
                InputJsonDelta("m1", '{"code":"M17'),
            ],
        )
        assert ("input", "lookup_icd10", "M17") in recorder.calls
        assert ("input", "lookup_icd10", "knee") not in recorder.calls

    def test_fragments_outside_tool_block_ignored(self, interpreter, recorder):
        _feed(interpreter, [InputJsonDelta("m1", '{"query":"x"}')])
        assert recorder.calls == []

    def test_malformed_fragments_are_harmless(self, interpreter, recorder):
        _feed(
            interpreter,
            [
                ContentBlockStart("m1", "tool_use", "search_icd10"),
                InputJsonDelta("m1", "}}}{{"),
                InputJsonDelta("m1", '"\\'),
            ],
        )
        assert recorder.calls == [("start", "search_icd10")]

    def test_each_invocation_reported_once(self, interpreter, recorder):
        message = ConsolidatedMessage(
            "m1",
            tool_invocations=[
                ToolInvocation("t1", "search_icd10", {"query": "a"}),
                ToolInvocation("t2", "search_icd10", {"query": "b"}),
            ],
        )
        _feed(interpreter, [message, message])
        assert [c for c in recorder.calls if c[0] == "use"] == [
            ("use", "search_icd10", {"query": "a"}),
            ("use", "search_icd10", {"query": "b"}),
        ]


class TestTermination:
    def test_session_handle_captured(self, interpreter):
        _feed(interpreter, [SessionInitialized("abc")])
        assert interpreter.agent_session_id == "abc"
        assert not interpreter.done

    def test_success_stops_without_error(self, interpreter, recorder):
        results = _feed(interpreter, [TextDelta("m1", "ok"), TurnResult("success")])
        assert results == [False, True]
        assert interpreter.done
        assert not any(c[0] == "error" for c in recorder.calls)

    def test_failure_reports_reason(self, interpreter, recorder):
        _feed(interpreter, [TurnResult("error_max_turns", ["too many steps"])])
        assert recorder.calls == [("error", "Agent stopped (error_max_turns): too many steps")]

    def test_failure_without_details(self, interpreter, recorder):
        _feed(interpreter, [TurnResult("error_during_execution")])
        assert recorder.calls == [("error", "Agent stopped (error_during_execution): unknown error")]

    def test_messages_after_result_ignored(self, interpreter, recorder):
        _feed(interpreter, [TurnResult("success"), TextDelta("m9", "late")])
        assert interpreter.narration == ""
        assert recorder.calls == []
