"""Utilities for preparing message histories and reading results back out."""

from __future__ import annotations

import math
import re
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence, Set
from uuid import uuid4

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

EMPTY_RESPONSE_FALLBACK = "I finished working on this but have nothing further to add."
STALE_TOOL_NOTE = "[Tool result from previous session: {content}]"
USER_SNIPPET_LENGTH = 120

_REASONING_BLOCK = re.compile(
    r"<(thinking|reasoning|scratchpad)>.*?</\1>\s*",
    re.IGNORECASE | re.DOTALL,
)
_UNCLOSED_REASONING = re.compile(r"<(thinking|reasoning|scratchpad)>.*\Z", re.IGNORECASE | re.DOTALL)


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


def message_role(message: BaseMessage) -> MessageRole:
    """Resolve a message's role from its class.

    Raises:
        ValueError: Unsupported message type
    """
    if isinstance(message, SystemMessage):
        return MessageRole.SYSTEM
    if isinstance(message, HumanMessage):
        return MessageRole.USER
    if isinstance(message, AIMessage):
        return MessageRole.ASSISTANT
    if isinstance(message, ToolMessage):
        return MessageRole.TOOL
    raise ValueError(f"Unsupported message type: {type(message).__name__}")


def to_text(content: Any) -> str:
    """Flatten string or content-block message content to plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type", "text") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return str(content)


def strip_reasoning_blocks(text: str) -> str:
    """Remove <thinking>/<reasoning>/<scratchpad> blocks, including an unclosed trailing one."""
    cleaned = _REASONING_BLOCK.sub("", text or "")
    cleaned = _UNCLOSED_REASONING.sub("", cleaned)
    return cleaned.strip()


def _tool_call_ids(message: AIMessage) -> Set[str]:
    ids = set()
    for tc in getattr(message, "tool_calls", None) or []:
        tc_id = tc.get("id") if isinstance(tc, dict) else getattr(tc, "id", None)
        if tc_id:
            ids.add(tc_id)
    return ids


def sanitize_stale_tool_messages(messages: Sequence[BaseMessage]) -> List[BaseMessage]:
    """Make a stored history safe to send to a provider.

    A ToolMessage is kept only while it answers a tool call of the assistant
    turn directly before it; otherwise it becomes a SystemMessage note. An
    assistant turn whose tool calls are not all answered loses its
    ``tool_calls`` (content is kept).

    Args:
        messages: Conversation history, possibly from an earlier session

    Returns:
        New list, input messages are not mutated
    """
    answered: Set[str] = {
        m.tool_call_id for m in messages if isinstance(m, ToolMessage) and m.tool_call_id
    }

    cleaned: List[BaseMessage] = []
    open_calls: Set[str] = set()
    for msg in messages:
        if isinstance(msg, ToolMessage):
            if msg.tool_call_id in open_calls:
                open_calls.discard(msg.tool_call_id)
                cleaned.append(msg)
            else:
                cleaned.append(SystemMessage(
                    content=STALE_TOOL_NOTE.format(content=to_text(msg.content)),
                    id=msg.id,
                ))
            continue

        open_calls = set()
        if isinstance(msg, AIMessage):
            call_ids = _tool_call_ids(msg)
            if call_ids and not call_ids <= answered:
                msg = AIMessage(content=msg.content, id=msg.id, name=msg.name)
            else:
                open_calls = call_ids
        cleaned.append(msg)

    return cleaned


def normalize_system_first(messages: Sequence[BaseMessage], system_prompt: str = "") -> List[BaseMessage]:
    """Put a single system message first, merging any leading system messages.

    System messages that appear later (for example delegation notes) stay in place.
    """
    leading: List[str] = [system_prompt] if system_prompt else []
    rest = list(messages)
    while rest and isinstance(rest[0], SystemMessage):
        leading.append(to_text(rest.pop(0).content))

    leading = [part for part in leading if part.strip()]
    if not leading:
        return rest
    return [SystemMessage(content="\n\n".join(leading))] + rest


def ensure_message_ids(messages: Iterable[BaseMessage]) -> List[BaseMessage]:
    """Give every message a stable id so re-sent inputs replace instead of duplicate."""
    result = []
    for msg in messages:
        if not msg.id:
            msg = msg.model_copy(update={"id": str(uuid4())})
        result.append(msg)
    return result


def last_human_text(messages: Sequence[BaseMessage]) -> str:
    for msg in reversed(messages):
        if isinstance(msg, HumanMessage):
            return to_text(msg.content)
    return ""


def fallback_for_input(user_input: str) -> str:
    snippet = " ".join((user_input or "").split())
    if len(snippet) > USER_SNIPPET_LENGTH:
        snippet = snippet[:USER_SNIPPET_LENGTH].rstrip() + "..."
    if not snippet:
        return "I wasn't able to produce an answer for your request. Please try again with more detail."
    return (
        f'I wasn\'t able to produce a complete answer for "{snippet}". '
        "Please try rephrasing or adding more detail."
    )


def extract_final_content(produced: Sequence[BaseMessage], user_input: str) -> str:
    """Pick the final answer from the messages produced during one execution.

    Order: last assistant message with text, then the trailing tool
    result(s), then a fallback that quotes the user's request.
    Reasoning blocks are removed; if that empties the answer,
    EMPTY_RESPONSE_FALLBACK is returned.
    """
    for msg in reversed(produced):
        if isinstance(msg, AIMessage):
            text = to_text(msg.content)
            if text.strip():
                return strip_reasoning_blocks(text) or EMPTY_RESPONSE_FALLBACK

    trailing: List[str] = []
    for msg in reversed(produced):
        if not isinstance(msg, ToolMessage):
            break
        text = to_text(msg.content).strip()
        if text:
            trailing.insert(0, text)
    if trailing:
        return strip_reasoning_blocks("\n\n".join(trailing)) or EMPTY_RESPONSE_FALLBACK

    return fallback_for_input(user_input)


def estimate_tokens(messages: Iterable[BaseMessage]) -> int:
    """Rough token count: four characters per token."""
    chars = sum(len(to_text(m.content)) for m in messages)
    return math.ceil(chars / 4)


def find_new_messages(messages: Sequence[BaseMessage], known_ids: Set[Optional[str]]) -> List[BaseMessage]:
    return [m for m in messages if m.id not in known_ids]
