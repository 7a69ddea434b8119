"""
Stream interpreter: turns the agent's protocol messages into narration text,
tool lifecycle signals and completed tool invocations.

Two paths report the same model step:
  - live:         TextDelta / InputJsonDelta fragments between block boundaries
  - consolidated: one ConsolidatedMessage with full text and parsed tool inputs

Narration is deduplicated by message id: text from a consolidated message is
only used when none of that message's text was streamed.

Tool argument fragments are never parsed as JSON. A few fields (query, code,
action) are pulled out with truncation-tolerant regexes for the live preview
only; the authoritative arguments come from the consolidated message.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from agents.agent_session import (
    AgentMessage,
    ConsolidatedMessage,
    ContentBlockStart,
    ContentBlockStop,
    InputJsonDelta,
    SessionInitialized,
    TextDelta,
    TurnResult,
)

logger = logging.getLogger(__name__)

# Preview only, in priority order. An unterminated string still matches.
_PREVIEW_PATTERNS = (
    re.compile(r'"query"\s*:\s*"([^"]*)'),
    re.compile(r'"code"\s*:\s*"([^"]*)'),
    re.compile(r'"action"\s*:\s*"([^"]*)'),
)


def extract_preview(partial_json: str) -> Optional[str]:
    """Best-effort extraction of a human-meaningful field from partial JSON."""
    for pattern in _PREVIEW_PATTERNS:
        match = pattern.search(partial_json)
        if match and match.group(1):
            return match.group(1)
    return None


class StreamCallbacks:
    """Override the hooks you need; the defaults do nothing."""

    def on_text(self, text: str) -> None:
        pass

    def on_tool_start(self, tool_name: str) -> None:
        pass

    def on_tool_input(self, tool_name: str, extracted: str) -> None:
        pass

    def on_tool_use(self, tool_name: str, tool_input: dict[str, Any]) -> None:
        pass

    def on_error(self, message: str) -> None:
        pass


class StreamInterpreter:
    def __init__(self, callbacks: StreamCallbacks) -> None:
        self.callbacks = callbacks
        self.narration = ""
        self.agent_session_id: Optional[str] = None
        self.result: Optional[TurnResult] = None

        self._in_tool = False
        self._tool_name = ""
        self._tool_input = ""
        self._last_preview: Optional[str] = None
        # Ids of messages whose text is already part of the narration.
        self._captured_ids: set[str] = set()
        self._consolidated_ids: set[str] = set()

    @property
    def done(self) -> bool:
        return self.result is not None

    def process(self, message: AgentMessage) -> bool:
        """Process one protocol message. Returns True once the turn is over."""
        if self.done:
            return True

        if isinstance(message, SessionInitialized):
            self.agent_session_id = message.session_id

        elif isinstance(message, ContentBlockStart):
            self._reset_block()
            if message.block_type == "tool_use":
                self._in_tool = True
                self._tool_name = message.name
                self.callbacks.on_tool_start(message.name)

        elif isinstance(message, TextDelta):
            if not self._in_tool and message.text:
                self._captured_ids.add(message.message_id)
                self.narration += message.text
                self.callbacks.on_text(message.text)

        elif isinstance(message, InputJsonDelta):
            if self._in_tool:
                self._tool_input += message.partial_json or ""
                preview = extract_preview(self._tool_input)
                if preview and preview != self._last_preview:
                    self._last_preview = preview
                    self.callbacks.on_tool_input(self._tool_name, preview)

        elif isinstance(message, ContentBlockStop):
            self._reset_block()

        elif isinstance(message, ConsolidatedMessage):
            self._consolidate(message)

        elif isinstance(message, TurnResult):
            self.result = message
            if not message.is_success:
                detail = "; ".join(message.errors) or "unknown error"
                self.callbacks.on_error(f"Agent stopped ({message.subtype}): {detail}")
            return True

        else:
            logger.debug("Ignoring unknown agent message: %r", message)

        return False

    def _reset_block(self) -> None:
        self._in_tool = False
        self._tool_name = ""
        self._tool_input = ""
        self._last_preview = None

    def _consolidate(self, message: ConsolidatedMessage) -> None:
        if message.message_id in self._consolidated_ids:
            return
        self._consolidated_ids.add(message.message_id)

        for invocation in message.tool_invocations:
            self.callbacks.on_tool_use(invocation.name, invocation.input)

        if message.message_id in self._captured_ids:
            return
        text = "".join(message.text_blocks)
        if text:
            self._captured_ids.add(message.message_id)
            self.narration += text
            self.callbacks.on_text(text)
