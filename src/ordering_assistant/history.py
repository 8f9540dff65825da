"""Conversation history helpers.

The persisted history is owned by the caller. Everything here returns new
lists and never mutates the sequence it was given.
"""

import json
from collections.abc import Sequence
from typing import Any

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from .models import BasketSummary

BASKET_CONTEXT_HEADER = "Basket context (read-only):"
INITIAL_CALL_PREFIX = "call_init_"


def parse_tool_content(content: Any) -> dict | None:
    """Decode a tool message's JSON content. Returns None for anything that is
    not a JSON object."""
    if isinstance(content, dict):
        return content
    if not isinstance(content, str):
        return None
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def last_user_text(messages: Sequence[BaseMessage]) -> str | None:
    for msg in reversed(messages):
        if isinstance(msg, HumanMessage):
            return msg.content if isinstance(msg.content, str) else str(msg.content)
    return None


def current_round(messages: Sequence[BaseMessage]) -> tuple[AIMessage | None, list[ToolMessage]]:
    """Return the latest tool-calling AI message and the tool results after it."""
    last_ai_idx = -1
    for i, msg in enumerate(messages):
        if isinstance(msg, AIMessage) and (msg.tool_calls or msg.invalid_tool_calls):
            last_ai_idx = i
    if last_ai_idx < 0:
        return None, []
    tool_messages = [m for m in messages[last_ai_idx + 1 :] if isinstance(m, ToolMessage)]
    return messages[last_ai_idx], tool_messages


# ---------------------------------------------------------------------------
# Ephemeral basket context
# ---------------------------------------------------------------------------


def format_basket_context(basket: BasketSummary | None, currency: str = "EUR") -> SystemMessage | None:
    if basket is None:
        return None
    if basket.items:
        lines = [
            f"- {line.quantity} x {line.name}"
            + (f" [{', '.join(line.options)}]" if line.options else "")
            + f" ({line.total_price:.2f} {currency})"
            for line in basket.items
        ]
        summary = "\n".join(lines) + f"\nTotal: {basket.total_price:.2f} {currency}"
    else:
        summary = "Basket is empty."
    return SystemMessage(content=f"{BASKET_CONTEXT_HEADER}\n{summary}")


def is_basket_context(message: BaseMessage) -> bool:
    return (
        isinstance(message, SystemMessage)
        and isinstance(message.content, str)
        and message.content.startswith(BASKET_CONTEXT_HEADER)
    )


def with_ephemeral_context(
    messages: Sequence[BaseMessage], context: SystemMessage | None
) -> list[BaseMessage]:
    """Splice `context` in right after the first system message (or at the
    front) of a new list for a single completion call."""
    out = list(messages)
    if context is None:
        return out
    first_system = next((i for i, m in enumerate(out) if isinstance(m, SystemMessage)), None)
    position = 0 if first_system is None else first_system + 1
    out.insert(position, context)
    return out


def strip_ephemeral_context(messages: Sequence[BaseMessage]) -> list[BaseMessage]:
    return [m for m in messages if not is_basket_context(m)]


# ---------------------------------------------------------------------------
# Display-only opening messages
# ---------------------------------------------------------------------------


def is_initial_display(message: BaseMessage) -> bool:
    """True for the opening search/display pair that is shown to the user but
    never sent to the model."""
    if isinstance(message, ToolMessage):
        return message.tool_call_id.startswith(INITIAL_CALL_PREFIX)
    if isinstance(message, AIMessage) and message.tool_calls:
        return all((tc.get("id") or "").startswith(INITIAL_CALL_PREFIX) for tc in message.tool_calls)
    return False


def strip_initial_display(messages: Sequence[BaseMessage]) -> list[BaseMessage]:
    return [m for m in messages if not is_initial_display(m)]
