"""Typed conversation turns.

A transcript is a list of three explicit variants, discriminated by
``role``:

* ``UserTurn``        — text written by the client
* ``ModelTurn``       — model text and/or the tool calls it issued
* ``ToolResultTurn``  — the structured result of one tool call, always
                        carrying the tool name

Raw rows from the store are parsed once, at ingestion (``parse_turns``);
legacy role names are mapped there and nowhere else.  ``sanitize`` then
repairs the shape the model provider requires: the first turn is a user
turn and no tool call is left without its result.
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Literal, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


class ToolCall(BaseModel):
    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class UserTurn(BaseModel):
    role: Literal["user"] = "user"
    text: str


class ModelTurn(BaseModel):
    role: Literal["model"] = "model"
    text: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ToolResultTurn(BaseModel):
    role: Literal["tool_result"] = "tool_result"
    tool_call_id: str
    name: str
    result: dict[str, Any] = Field(default_factory=dict)


Turn = Annotated[Union[UserTurn, ModelTurn, ToolResultTurn], Field(discriminator="role")]
_turn_adapter: TypeAdapter = TypeAdapter(Turn)

# Role names written by older transcript producers
_ROLE_ALIASES = {
    "assistant": "model",
    "ai": "model",
    "human": "user",
    "tool": "tool_result",
    "function": "tool_result",
    "tool-result": "tool_result",
}


# ── Ingestion ────────────────────────────────────────────────────────


def parse_turn(raw: dict[str, Any]) -> UserTurn | ModelTurn | ToolResultTurn | None:
    """Parse one stored turn; returns ``None`` (and logs) for unusable rows."""
    data = dict(raw)
    role = data.get("role")
    data["role"] = _ROLE_ALIASES.get(role, role)
    if "text" not in data and isinstance(data.get("content"), str):
        data["text"] = data.pop("content")
    try:
        return _turn_adapter.validate_python(data)
    except ValidationError as exc:
        logger.warning("Dropping unreadable transcript turn (role=%r): %s", role, exc.errors()[:1])
        return None


def parse_turns(rows: list[dict[str, Any]]) -> list[UserTurn | ModelTurn | ToolResultTurn]:
    return [t for t in (parse_turn(r) for r in rows) if t is not None]


def dump_turns(turns: list[UserTurn | ModelTurn | ToolResultTurn]) -> list[dict[str, Any]]:
    return [t.model_dump(mode="json") for t in turns]


# ── Sanitization ─────────────────────────────────────────────────────


def sanitize(turns: list[UserTurn | ModelTurn | ToolResultTurn]) -> list[UserTurn | ModelTurn | ToolResultTurn]:
    """Return a transcript the model provider will accept.

    1. Leading turns before the first user turn are dropped.
    2. A model turn whose tool calls are not all answered by the tool
       results directly after it is dropped together with those results
       (this is what removes a trailing unfinished tool call).
    3. Tool results that answer no call of the preceding model turn are
       dropped.
    """
    start = next((i for i, t in enumerate(turns) if isinstance(t, UserTurn)), None)
    if start is None:
        return []

    pending = turns[start:]
    clean: list[UserTurn | ModelTurn | ToolResultTurn] = []
    i = 0
    while i < len(pending):
        turn = pending[i]
        i += 1

        if isinstance(turn, ToolResultTurn):
            logger.debug("Dropping orphan tool result for %s", turn.name)
            continue

        if isinstance(turn, UserTurn) or not turn.tool_calls:
            clean.append(turn)
            continue

        results: list[ToolResultTurn] = []
        while i < len(pending) and isinstance(pending[i], ToolResultTurn):
            results.append(pending[i])
            i += 1

        call_ids = {c.id for c in turn.tool_calls}
        answered = [r for r in results if r.tool_call_id in call_ids]
        if {r.tool_call_id for r in answered} != call_ids:
            logger.debug(
                "Dropping unfinished tool-call turn (%s)",
                ", ".join(c.name for c in turn.tool_calls),
            )
            continue

        clean.append(turn)
        clean.extend(answered)

    return clean


# ── LangChain message conversion ─────────────────────────────────────


def message_text(message: BaseMessage) -> str:
    """Plain text of a message whose content may be a list of blocks."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def to_messages(turns: list[UserTurn | ModelTurn | ToolResultTurn]) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    for turn in turns:
        if isinstance(turn, UserTurn):
            messages.append(HumanMessage(content=turn.text))
        elif isinstance(turn, ModelTurn):
            messages.append(
                AIMessage(
                    content=turn.text,
                    tool_calls=[
                        {"id": c.id, "name": c.name, "args": c.args} for c in turn.tool_calls
                    ],
                )
            )
        else:
            messages.append(
                ToolMessage(
                    content=json.dumps(turn.result, ensure_ascii=False, default=str),
                    tool_call_id=turn.tool_call_id,
                    name=turn.name,
                )
            )
    return messages


def from_messages(messages: list[BaseMessage]) -> list[UserTurn | ModelTurn | ToolResultTurn]:
    turns: list[UserTurn | ModelTurn | ToolResultTurn] = []
    for message in messages:
        if isinstance(message, HumanMessage):
            turns.append(UserTurn(text=message_text(message)))
        elif isinstance(message, AIMessage):
            turns.append(
                ModelTurn(
                    text=message_text(message),
                    tool_calls=[
                        ToolCall(id=c["id"], name=c["name"], args=c.get("args") or {})
                        for c in message.tool_calls
                    ],
                )
            )
        elif isinstance(message, ToolMessage):
            turns.append(
                ToolResultTurn(
                    tool_call_id=message.tool_call_id,
                    name=message.name or "unknown",
                    result=_decode_tool_content(message),
                )
            )
    return turns


def _decode_tool_content(message: ToolMessage) -> dict[str, Any]:
    text = message_text(message)
    try:
        decoded = json.loads(text)
    except ValueError:
        return {"success": message.status != "error", "content": text}
    return decoded if isinstance(decoded, dict) else {"success": True, "content": decoded}
