"""
Session orchestrator: drives one agent turn end to end and yields the typed
event sequence for it.

    start_analysis(clinical_notes, patient, user_id)   first turn, creates the session
    continue_chat(session_id, message, user_id)        follow-up turn, resumes the agent
    delete_session(session_id, user_id)                drops the session and its agent conversation

The two turns are async generators that end with exactly one TurnCompleted or TurnFailed,
except when the caller cancels: then nothing more is yielded and nothing is
written.

Ordering rules:
  - Events produced by callbacks (tool results, claim changes, stages) are
    buffered and drained after every agent message, so they come out in the
    order they happened.
  - On success the session is persisted before TurnCompleted is yielded.
  - On failure the session is marked ``error`` before TurnFailed is yielded.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections import deque
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional

from pydantic import ValidationError

from agents.agent_session import AgentRunner, TurnRequest
from agents.stream_interpreter import StreamCallbacks, StreamInterpreter
from agents.system_prompt import (
    ANALYSIS_SYSTEM_PROMPT,
    CHAT_SYSTEM_PROMPT,
    build_analysis_prompt,
    build_chat_prompt,
)
from agents.tools import ReferenceLookup, ToolContext, make_tools
from claims.aggregate import ClaimAggregate, ClaimMutation
from claims.models import Claim, NoteHighlight
from db.store import SessionStore
from orchestrator.events import (
    ClaimReplaced,
    EvidenceHighlights,
    FindingAdded,
    FindingResolved,
    NarrationDelta,
    RiskScoreChanged,
    StageChanged,
    ToolInvocationProgress,
    ToolInvocationResult,
    ToolInvocationStarted,
    TurnCompleted,
    TurnEvent,
    TurnFailed,
)
from orchestrator.stage_tracker import COMPLETE_STAGE, FIRST_STAGE, StageTracker
from orchestrator.summary import (
    ANALYSIS_DEFAULT_PROMPTS,
    CHAT_DEFAULT_PROMPTS,
    build_chat_summary,
    choose_suggested_prompts,
    summarize_claim_change,
)

logger = logging.getLogger(__name__)

ANALYSIS_MAX_TURNS: int = int(os.getenv("ANALYSIS_MAX_TURNS", "100"))
CHAT_MAX_TURNS: int = int(os.getenv("CHAT_MAX_TURNS", "10"))


class TurnEventBridge(StreamCallbacks):
    """Collects everything that happens during a turn as pending outbound events."""

    def __init__(self, track_stages: bool = False) -> None:
        self.pending: deque[TurnEvent] = deque()
        self.stages: Optional[StageTracker] = StageTracker(self._on_stage) if track_stages else None
        self.agent_error: Optional[str] = None
        self.transport_error: Optional[str] = None
        self.tool_invocations = 0

    def emit(self, event: TurnEvent) -> None:
        self.pending.append(event)

    def drain(self) -> list[TurnEvent]:
        events = list(self.pending)
        self.pending.clear()
        return events

    def advance(self, stage: int) -> None:
        if self.stages is not None:
            self.stages.advance(stage)

    def _on_stage(self, stage: int, label: str) -> None:
        self.emit(StageChanged(stage=stage, label=label))

    # ---- stream interpreter callbacks --------------------------------

    def on_text(self, text: str) -> None:
        self.emit(NarrationDelta(text=text))

    def on_tool_start(self, tool_name: str) -> None:
        self.emit(ToolInvocationStarted(name=tool_name))
        if self.stages is not None:
            self.stages.observe_tool_start(tool_name)

    def on_tool_input(self, tool_name: str, extracted: str) -> None:
        self.emit(ToolInvocationProgress(name=tool_name, partial_query_text=extracted))

    def on_tool_use(self, tool_name: str, tool_input: dict[str, Any]) -> None:
        self.tool_invocations += 1
        logger.debug("tool invocation: %s %s", tool_name, sorted(tool_input))

    def on_error(self, message: str) -> None:
        self.agent_error = message

    # ---- tool context callbacks --------------------------------------

    def on_tool_result(self, tool_name: str, summary: str) -> None:
        self.emit(ToolInvocationResult(name=tool_name, result_summary=summary))

    def on_highlights(self, highlights: list[NoteHighlight]) -> None:
        self.emit(EvidenceHighlights(highlights=[h.to_wire() for h in highlights]))

    def on_claim_change(self, mutation: ClaimMutation, previous: Optional[Claim], current: Claim) -> None:
        self.emit(ClaimReplaced(claim=current.to_wire()))

        before = {f.id: f for f in previous.findings} if previous is not None else {}
        for finding in current.findings:
            old = before.get(finding.id)
            if old is None:
                self.emit(FindingAdded(finding=finding.to_wire()))
            elif finding.resolved and not old.resolved:
                self.emit(FindingResolved(finding_id=finding.id, reason=finding.resolved_reason))

        if previous is None or previous.risk_score != current.risk_score:
            self.emit(RiskScoreChanged(score=current.risk_score))

        if self.stages is not None:
            self.stages.observe_mutation(mutation.action)


class SessionOrchestrator:
    def __init__(self, store: SessionStore, runner: AgentRunner, reference: ReferenceLookup) -> None:
        self._store = store
        self._runner = runner
        self._reference = reference

    # ---- public entry points -----------------------------------------

    async def start_analysis(
        self,
        clinical_notes: str,
        patient: Optional[dict[str, Any]],
        user_id: str,
    ) -> AsyncIterator[TurnEvent]:
        try:
            session = await asyncio.to_thread(self._store.create_session, user_id, clinical_notes)
        except Exception as e:
            logger.exception("Failed to create session for user %s", user_id)
            yield TurnFailed(message=f"Failed to create session: {e}")
            return
        session_id = session["id"]

        bridge = TurnEventBridge(track_stages=True)
        aggregate = ClaimAggregate(None, on_change=bridge.on_claim_change)
        context = ToolContext(
            aggregate=aggregate,
            reference=self._reference,
            on_tool_result=bridge.on_tool_result,
            on_highlights=bridge.on_highlights,
        )
        request = TurnRequest(
            prompt=build_analysis_prompt(clinical_notes, patient),
            system_prompt=ANALYSIS_SYSTEM_PROMPT,
            tools=make_tools(context),
            max_turns=ANALYSIS_MAX_TURNS,
        )
        interpreter = StreamInterpreter(bridge)

        bridge.advance(FIRST_STAGE)
        async with aclosing(self._stream_turn(request, interpreter, bridge)) as events:
            async for event in events:
                yield event

        failure = self._failure_message(interpreter, bridge)
        if failure is not None:
            yield await self._fail(session_id, failure)
            return

        final_claim = aggregate.claim
        suggested = choose_suggested_prompts(
            context.suggested_prompts, interpreter.narration, ANALYSIS_DEFAULT_PROMPTS
        )
        summary = build_chat_summary(final_claim) if final_claim is not None else interpreter.narration
        highlights = [h.to_wire() for h in context.highlights]
        claim_wire = final_claim.to_wire() if final_claim is not None else None

        try:
            await asyncio.to_thread(
                self._store.complete_turn,
                session_id,
                claim_wire,
                interpreter.agent_session_id,
                [{"role": "agent", "content": summary, "suggested_prompts": suggested}],
                highlights,
            )
        except Exception as e:
            logger.exception("Failed to persist analysis for session %s", session_id)
            await self._release(interpreter.agent_session_id)
            yield await self._fail(session_id, f"Failed to save session: {e}")
            return

        bridge.advance(COMPLETE_STAGE)
        for event in bridge.drain():
            yield event
        logger.info(
            "Analysis complete: session=%s tools=%d claim=%s",
            session_id, bridge.tool_invocations, final_claim is not None,
        )
        yield TurnCompleted(
            session_id=session_id,
            final_claim=claim_wire,
            summary_text=summary,
            suggested_follow_ups=suggested,
            highlights=highlights or None,
        )

    async def continue_chat(self, session_id: str, message: str, user_id: str) -> AsyncIterator[TurnEvent]:
        try:
            session = await asyncio.to_thread(self._store.get_session, session_id)
        except Exception as e:
            logger.exception("Failed to load session %s", session_id)
            yield TurnFailed(message=f"Failed to load session: {e}")
            return
        if session is None:
            yield TurnFailed(message=f"Session not found: {session_id}")
            return
        if session["user_id"] != user_id:
            logger.warning("User %s tried to continue session %s", user_id, session_id)
            yield TurnFailed(message="Unauthorized")
            return
        try:
            before = Claim.model_validate(session["claim"]) if session["claim"] else None
        except ValidationError as e:
            logger.exception("Stored claim for session %s is invalid", session_id)
            yield TurnFailed(message=f"Stored claim is invalid: {e.error_count()} errors")
            return

        bridge = TurnEventBridge()
        aggregate = ClaimAggregate(before, on_change=bridge.on_claim_change)
        context = ToolContext(
            aggregate=aggregate,
            reference=self._reference,
            on_tool_result=bridge.on_tool_result,
            collect_highlights=False,
        )
        request = TurnRequest(
            prompt=build_chat_prompt(message, before, session["clinical_notes"]),
            system_prompt=CHAT_SYSTEM_PROMPT,
            tools=make_tools(context),
            max_turns=CHAT_MAX_TURNS,
            resume=session["agent_session_id"],
        )
        interpreter = StreamInterpreter(bridge)

        async with aclosing(self._stream_turn(request, interpreter, bridge)) as events:
            async for event in events:
                yield event

        failure = self._failure_message(interpreter, bridge)
        if failure is not None:
            yield await self._fail(session_id, failure)
            return

        after = aggregate.claim
        suggested = choose_suggested_prompts(
            context.suggested_prompts, interpreter.narration, CHAT_DEFAULT_PROMPTS
        )
        summary = interpreter.narration
        claim_wire = after.to_wire() if after is not None else None

        try:
            await asyncio.to_thread(
                self._store.complete_turn,
                session_id,
                claim_wire,
                interpreter.agent_session_id,
                [
                    {"role": "user", "content": message},
                    {
                        "role": "agent",
                        "content": summary,
                        "suggested_prompts": suggested,
                        "claim_change": summarize_claim_change(before, after),
                    },
                ],
            )
        except Exception as e:
            logger.exception("Failed to persist chat turn for session %s", session_id)
            await self._release(interpreter.agent_session_id)
            yield await self._fail(session_id, f"Failed to save session: {e}")
            return

        if session["agent_session_id"] != interpreter.agent_session_id:
            await self._release(session["agent_session_id"])

        yield TurnCompleted(
            session_id=session_id,
            final_claim=claim_wire,
            summary_text=summary,
            suggested_follow_ups=suggested,
        )

    async def delete_session(self, session_id: str, user_id: str) -> bool:
        """Delete an owned session and free its agent conversation."""
        session = await asyncio.to_thread(self._store.get_session, session_id)
        if session is None or session["user_id"] != user_id:
            return False
        if not await asyncio.to_thread(self._store.delete_session, session_id, user_id):
            return False
        await self._release(session["agent_session_id"])
        return True

    # ---- helpers -----------------------------------------------------

    async def _stream_turn(
        self,
        request: TurnRequest,
        interpreter: StreamInterpreter,
        bridge: TurnEventBridge,
    ) -> AsyncIterator[TurnEvent]:
        """Pull the agent stream through the interpreter, yielding events as they appear.

        Transport failures are recorded on the bridge. Cancellation is not caught.
        """
        stream = self._runner.run_turn(request)
        try:
            async with aclosing(stream):
                async for message in stream:
                    done = interpreter.process(message)
                    for event in bridge.drain():
                        yield event
                    if done:
                        break
        except Exception as e:
            logger.exception("Agent turn failed")
            bridge.transport_error = f"Agent error: {e}"

        for event in bridge.drain():
            yield event

    @staticmethod
    def _failure_message(interpreter: StreamInterpreter, bridge: TurnEventBridge) -> Optional[str]:
        if bridge.transport_error is not None:
            return bridge.transport_error
        if interpreter.result is None:
            return "Agent error: stream ended without a result"
        if not interpreter.result.is_success:
            return bridge.agent_error or f"Agent stopped ({interpreter.result.subtype})"
        return None

    async def _fail(self, session_id: str, message: str) -> TurnFailed:
        """Mark the session errored, then hand back the event to emit."""
        try:
            await asyncio.to_thread(self._store.mark_error, session_id, message)
        except Exception:
            logger.exception("Failed to mark session %s as errored", session_id)
        return TurnFailed(message=message)

    async def _release(self, handle: Optional[str]) -> None:
        if not handle:
            return
        try:
            await self._runner.release(handle)
        except Exception:
            logger.exception("Failed to release agent session %s", handle)
