"""LangGraph tool-calling loop for one conversation turn.

Architecture:
  A two-node StateGraph::

    chatbot → (tool calls and budget left?) → tools → chatbot (loop)
            → (plain text, or budget spent)  → END

  1. **chatbot** — one model call via ``ModelProvider.generate`` (retried
                   with backoff while throttled); counts iterations.
  2. **tools**   — runs every tool call of the last model message through
                   the ``ToolDispatcher`` and appends one ``ToolMessage``
                   per call, in call order.

  The loop is capped at ``max_iterations`` model calls.  When the cap is
  reached the graph ends on the model message that still asks for tools;
  the session manager strips it and answers with whatever text exists.

  The graph holds no memory of its own: the session manager loads the
  transcript, passes it in ``messages`` and persists the result.
"""

from __future__ import annotations

import json
import logging
from typing import Annotated

from langchain_core.messages import AIMessage, AnyMessage, ToolMessage
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from booking_agent.config import MAX_TOOL_ITERATIONS
from booking_agent.services.model_provider import ModelProvider
from booking_agent.tools.dispatcher import ToolContext, ToolDispatcher

logger = logging.getLogger(__name__)


class AgentState(TypedDict):
    """State flowing through the graph.

    ``messages`` uses the ``add_messages`` reducer so nodes only return
    what they append.  ``iterations`` counts model calls in this turn.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    system_prompt: str
    tenant_id: str
    client_id: str
    iterations: int


def recursion_limit_for(max_iterations: int) -> int:
    # chatbot + tools per iteration, plus the final chatbot step and slack
    return 2 * max_iterations + 3


# ── Nodes ────────────────────────────────────────────────────────────


def _make_chatbot_node(provider: ModelProvider):
    def chatbot_node(state: AgentState) -> dict:
        iteration = state.get("iterations", 0) + 1
        logger.debug("chatbot iteration %d for %s/%s", iteration, state["tenant_id"], state["client_id"])
        response = provider.generate(state["system_prompt"], state["messages"])
        return {"messages": [response], "iterations": iteration}

    return chatbot_node


def _make_tools_node(dispatcher: ToolDispatcher):
    def tools_node(state: AgentState) -> dict:
        last = state["messages"][-1]
        context = ToolContext(tenant_id=state["tenant_id"], client_id=state["client_id"])
        results = []
        for call in last.tool_calls:
            result = dispatcher.dispatch(context, call["name"], call.get("args"))
            results.append(
                ToolMessage(
                    content=json.dumps(result, ensure_ascii=False, default=str),
                    tool_call_id=call["id"],
                    name=call["name"],
                    status="success" if result.get("success") else "error",
                )
            )
        return {"messages": results}

    return tools_node


# ── Conditional edge ─────────────────────────────────────────────────


def _make_router(max_iterations: int):
    def should_use_tools(state: AgentState) -> str:
        last = state["messages"][-1]
        if not isinstance(last, AIMessage) or not last.tool_calls:
            return END
        if state.get("iterations", 0) >= max_iterations:
            logger.warning(
                "Tool-call budget of %d spent for %s/%s; ending turn",
                max_iterations, state["tenant_id"], state["client_id"],
            )
            return END
        return "tools"

    return should_use_tools


# ── Graph assembly ───────────────────────────────────────────────────


def create_booking_agent(
    provider: ModelProvider,
    dispatcher: ToolDispatcher,
    *,
    max_iterations: int = MAX_TOOL_ITERATIONS,
):
    """Build and compile the turn graph.

    Run with::

        graph.stream(
            {"messages": [...], "system_prompt": "...", "tenant_id": "...",
             "client_id": "...", "iterations": 0},
            config={"recursion_limit": recursion_limit_for(max_iterations)},
            stream_mode="values",
        )
    """
    graph = StateGraph(AgentState)
    graph.add_node("chatbot", _make_chatbot_node(provider))
    graph.add_node("tools", _make_tools_node(dispatcher))
    graph.set_entry_point("chatbot")
    graph.add_conditional_edges(
        "chatbot", _make_router(max_iterations), {"tools": "tools", END: END},
    )
    graph.add_edge("tools", "chatbot")

    compiled = graph.compile()
    logger.debug("Booking agent compiled (max %d tool iterations)", max_iterations)
    return compiled
