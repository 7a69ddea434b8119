"""Agent state for the billing agent LangGraph workflow."""

from typing import Annotated, TypedDict

from langchain_core.messages import AnyMessage
from langgraph.graph.message import add_messages


class AgentState(TypedDict):
    """Conversation state, checkpointed per agent session (thread id)."""

    # Human prompt, assistant steps and tool results; appended, never replaced.
    messages: Annotated[list[AnyMessage], add_messages]
