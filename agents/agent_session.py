"""
Boundary to the reasoning agent.

An agent turn is started with a prompt, a system prompt and the tool catalogue,
and yields an ordered stream of protocol messages. Everything downstream (the
stream interpreter, the session orchestrator) depends only on the message kinds
defined here, never on the host's own protocol:

    SessionInitialized    resumable session handle
    TextDelta             partial content: narration text
    InputJsonDelta        partial content: fragment of a tool argument being built
    ContentBlockStart     block boundary: a tool-use (or text) block begins
    ContentBlockStop      block boundary: the current block ends
    ConsolidatedMessage   complete assistant message for one model step
    TurnResult            terminal success / failure

The host executes tool calls itself, using the catalogue it was given.
Cancellation is the caller cancelling its task / closing the stream; the
runner must release the underlying connection when its generator is closed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Protocol, Sequence, Union

from langchain_core.tools import BaseTool


@dataclass(frozen=True)
class SessionInitialized:
    session_id: str


@dataclass(frozen=True)
class TextDelta:
    message_id: str
    text: str


@dataclass(frozen=True)
class InputJsonDelta:
    message_id: str
    partial_json: str


@dataclass(frozen=True)
class ContentBlockStart:
    message_id: str
    block_type: str  # "tool_use" | "text"
    name: str = ""
    tool_call_id: Optional[str] = None


@dataclass(frozen=True)
class ContentBlockStop:
    message_id: str


@dataclass(frozen=True)
class ToolInvocation:
    id: str
    name: str
    input: dict[str, Any]


@dataclass(frozen=True)
class ConsolidatedMessage:
    """One model step. May re-state text that was already streamed."""

    message_id: str
    text_blocks: list[str] = field(default_factory=list)
    tool_invocations: list[ToolInvocation] = field(default_factory=list)


@dataclass(frozen=True)
class TurnResult:
    subtype: str  # "success" | "error_max_turns" | "error_during_execution"
    errors: list[str] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return self.subtype == "success"


AgentMessage = Union[
    SessionInitialized,
    TextDelta,
    InputJsonDelta,
    ContentBlockStart,
    ContentBlockStop,
    ConsolidatedMessage,
    TurnResult,
]


@dataclass
class TurnRequest:
    prompt: str
    system_prompt: str
    tools: Sequence[BaseTool]
    max_turns: int
    resume: Optional[str] = None


class AgentRunner(Protocol):
    def run_turn(self, request: TurnRequest) -> AsyncIterator[AgentMessage]:
        """Start one turn and yield its protocol messages in order.

        The first message is SessionInitialized carrying the handle that resumes
        this turn's conversation. The state behind ``request.resume`` is only
        read, never changed, so a failed or cancelled turn leaves it usable.
        """
        ...

    async def release(self, handle: str) -> None:
        """Free the resumable state behind ``handle``. Unknown handles are ignored."""
        ...
