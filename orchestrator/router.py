"""
Conditional edge functions for the billing agent LangGraph workflow.
"""

from __future__ import annotations

from langchain_core.messages import AIMessage

from orchestrator.state import AgentState


def route_after_agent(state: AgentState) -> str:
    """
    Decide the next node after an agent step.

    - last message is an AIMessage with tool calls → 'tools'
    - anything else (plain answer)                  → '__end__'
    """
    messages = state.get("messages") or []
    if not messages:
        return "__end__"

    last = messages[-1]
    if isinstance(last, AIMessage) and last.tool_calls:
        return "tools"

    return "__end__"
