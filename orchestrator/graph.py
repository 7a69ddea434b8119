"""
LangGraph StateGraph for the billing agent, and the runner that exposes it
through the agent protocol in agents/agent_session.py.

Flow:
  agent ──route_after_agent──► tools ──► agent ──► … ──► END
        (no tool calls) ──────────────────────────────► END

The agent node calls the chat model with the tool catalogue bound; the tools
node runs every tool call of one step concurrently and returns ToolMessages.
Conversations are checkpointed in SQLite under their thread id, which is
handed out as the resumable agent session handle.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional, Sequence

import aiosqlite
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.runnables import RunnableConfig
from langchain_core.tools import BaseTool
from langchain_openai import ChatOpenAI
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.sqlite.aio import AsyncSqliteSaver
from langgraph.errors import GraphRecursionError
from langgraph.graph import END, StateGraph
from langsmith import traceable

from agents.agent_session import (
    AgentMessage,
    ConsolidatedMessage,
    ContentBlockStart,
    ContentBlockStop,
    InputJsonDelta,
    SessionInitialized,
    TextDelta,
    ToolInvocation,
    TurnRequest,
    TurnResult,
)
from db.database import DATABASE_URL
from orchestrator.router import route_after_agent
from orchestrator.state import AgentState

logger = logging.getLogger(__name__)

AGENT_MODEL = os.getenv("AGENT_MODEL", "gpt-4o")


def _default_checkpoint_path() -> str:
    # sits next to the sessions database when that is a SQLite file
    if DATABASE_URL.startswith("sqlite:///") and ":memory:" not in DATABASE_URL:
        db_file = Path(DATABASE_URL[len("sqlite:///"):])
        return str(db_file.with_name(f"{db_file.stem}-agent.db"))
    return "./agent_checkpoints.db"


AGENT_CHECKPOINT_DB = os.getenv("AGENT_CHECKPOINT_DB") or _default_checkpoint_path()


def default_model() -> BaseChatModel:
    return ChatOpenAI(model=AGENT_MODEL, temperature=0, streaming=True)


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


@traceable(name="billing_agent_step")
async def _call_model(model: Any, messages: list, config: RunnableConfig) -> AIMessage:
    return await model.ainvoke(messages, config=config)


async def _run_tool(tools_by_name: dict[str, BaseTool], call: dict[str, Any]) -> ToolMessage:
    """Execute one tool call. Failures go back to the agent as text."""
    name = call.get("name", "")
    tool = tools_by_name.get(name)
    if tool is None:
        content = f"Error: unknown tool {name!r}"
    else:
        try:
            content = await tool.ainvoke(call.get("args") or {})
        except Exception as e:
            logger.exception("Tool %s failed", name)
            content = f"Error: {e}"
    return ToolMessage(content=str(content), tool_call_id=call.get("id") or "", name=name)


def build_graph(model: BaseChatModel, tools: Sequence[BaseTool], system_prompt: str) -> StateGraph:
    """Build (uncompiled) the agent ⇄ tools loop for one tool catalogue."""
    bound = model.bind_tools(list(tools)) if tools else model
    tools_by_name = {t.name: t for t in tools}

    async def agent(state: AgentState, config: RunnableConfig) -> dict:
        messages = [SystemMessage(content=system_prompt), *state["messages"]]
        response = await _call_model(bound, messages, config)
        return {"messages": [response]}

    async def run_tools(state: AgentState) -> dict:
        last = state["messages"][-1]
        calls = last.tool_calls if isinstance(last, AIMessage) else []
        results = await asyncio.gather(*(_run_tool(tools_by_name, call) for call in calls))
        return {"messages": list(results)}

    workflow = StateGraph(AgentState)

    # ---- nodes -------------------------------------------------------
    workflow.add_node("agent", agent)
    workflow.add_node("tools", run_tools)

    # ---- entry point -------------------------------------------------
    workflow.set_entry_point("agent")

    # ---- edges -------------------------------------------------------
    workflow.add_conditional_edges(
        "agent",
        route_after_agent,
        {
            "tools":   "tools",
            "__end__": END,
        },
    )
    workflow.add_edge("tools", "agent")

    return workflow


# ---------------------------------------------------------------------------
# Stream translation
# ---------------------------------------------------------------------------


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
            if not isinstance(part, dict) or part.get("type", "text") == "text"
        )
    return ""


class _ChunkTranslator:
    """
    Turns one thread's model chunks and completed agent steps into protocol
    messages. Deltas and the consolidated message of one model step share a
    message id so narration can be deduplicated downstream.
    """

    def __init__(self, thread_id: str) -> None:
        self._thread_id = thread_id
        self._steps = 0
        self._step_id: Optional[str] = None
        self._block: Optional[str] = None  # "text" | "tool:<index>"

    def _current_step(self) -> str:
        if self._step_id is None:
            self._steps += 1
            self._step_id = f"{self._thread_id}:{self._steps}"
        return self._step_id

    def feed(self, chunk: AIMessageChunk) -> list[AgentMessage]:
        step = self._current_step()
        out: list[AgentMessage] = []

        text = _text_of(chunk.content)
        if text:
            if self._block != "text":
                if self._block is not None:
                    out.append(ContentBlockStop(step))
                out.append(ContentBlockStart(step, "text"))
                self._block = "text"
            out.append(TextDelta(step, text))

        for tc in chunk.tool_call_chunks or []:
            block = f"tool:{tc.get('index')}"
            if tc.get("name") and self._block != block:
                if self._block is not None:
                    out.append(ContentBlockStop(step))
                out.append(ContentBlockStart(step, "tool_use", tc["name"], tc.get("id")))
                self._block = block
            if tc.get("args") and self._block == block:
                out.append(InputJsonDelta(step, tc["args"]))
        return out

    def finish(self, message: AIMessage) -> list[AgentMessage]:
        step = self._current_step()
        out: list[AgentMessage] = []
        if self._block is not None:
            out.append(ContentBlockStop(step))

        text = _text_of(message.content)
        out.append(
            ConsolidatedMessage(
                message_id=step,
                text_blocks=[text] if text else [],
                tool_invocations=[
                    ToolInvocation(id=tc.get("id") or "", name=tc["name"], input=dict(tc.get("args") or {}))
                    for tc in message.tool_calls
                ],
            )
        )
        self._step_id = None
        self._block = None
        return out


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class LangGraphAgentRunner:
    """
    AgentRunner backed by the LangGraph agent ⇄ tools loop.

    Every turn runs on a fresh thread seeded with the messages of the thread it
    resumes, and that fresh thread id is the handle it hands out. The resumed
    thread is only read, so a turn that fails or is cancelled halfway (leaving
    an unanswered tool call behind) is discarded and the caller's handle still
    points at the last complete conversation.

    Checkpoints live in SQLite (AGENT_CHECKPOINT_DB) so handles survive a
    restart; the connection is opened on first use.
    """

    def __init__(
        self,
        model_factory: Callable[[], BaseChatModel] = default_model,
        checkpointer: Optional[BaseCheckpointSaver] = None,
        checkpoint_path: Optional[str] = None,
    ) -> None:
        self._model_factory = model_factory
        self._checkpointer = checkpointer
        self._checkpoint_path = checkpoint_path or AGENT_CHECKPOINT_DB
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def _saver(self) -> BaseCheckpointSaver:
        async with self._lock:
            if self._checkpointer is None:
                Path(self._checkpoint_path).parent.mkdir(parents=True, exist_ok=True)
                self._conn = await aiosqlite.connect(self._checkpoint_path)
                self._checkpointer = AsyncSqliteSaver(self._conn)
                logger.info("Agent checkpoints: %s", self._checkpoint_path)
        return self._checkpointer

    async def aclose(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            self._checkpointer = None

    async def history(self, handle: str) -> list[BaseMessage]:
        """Messages stored under ``handle``; empty when it is unknown."""
        saver = await self._saver()
        saved = await saver.aget_tuple({"configurable": {"thread_id": handle}})
        if saved is None:
            return []
        return list(saved.checkpoint.get("channel_values", {}).get("messages", []))

    async def release(self, handle: str) -> None:
        saver = await self._saver()
        await saver.adelete_thread(handle)
        logger.debug("Released agent thread %s", handle)

    async def _discard(self, thread_id: str) -> None:
        try:
            await self.release(thread_id)
        except Exception:
            logger.exception("Could not discard agent thread %s", thread_id)

    async def run_turn(self, request: TurnRequest) -> AsyncIterator[AgentMessage]:
        saver = await self._saver()
        history = await self.history(request.resume) if request.resume else []
        if request.resume and not history:
            logger.warning("No stored conversation for %s; starting a new one", request.resume)

        thread_id = str(uuid.uuid4())
        graph = build_graph(self._model_factory(), request.tools, request.system_prompt).compile(
            checkpointer=saver
        )
        config: RunnableConfig = {
            "configurable": {"thread_id": thread_id},
            # one model step + one tools step per agent turn
            "recursion_limit": request.max_turns * 2 + 1,
        }
        translator = _ChunkTranslator(thread_id)
        completed = False

        try:
            yield SessionInitialized(thread_id)
            logger.info("Agent turn started: thread=%s resumed=%s", thread_id, request.resume)

            try:
                async for mode, chunk in graph.astream(
                    {"messages": [*history, HumanMessage(content=request.prompt)]},
                    config,
                    stream_mode=["messages", "updates"],
                ):
                    if mode == "messages":
                        message, metadata = chunk
                        if metadata.get("langgraph_node") != "agent" or not isinstance(message, AIMessageChunk):
                            continue
                        for out in translator.feed(message):
                            yield out
                    elif mode == "updates":
                        update = (chunk or {}).get("agent") or {}
                        for message in update.get("messages", []):
                            if isinstance(message, AIMessage):
                                for out in translator.finish(message):
                                    yield out
            except GraphRecursionError:
                logger.warning("Agent turn hit the turn limit: thread=%s max_turns=%d", thread_id, request.max_turns)
                yield TurnResult("error_max_turns", [f"Reached maximum number of turns ({request.max_turns})"])
                return

            completed = True
            yield TurnResult("success")
        finally:
            if not completed:
                await self._discard(thread_id)
