"""Final reply composition and order confirmation text."""

import re
from collections.abc import Sequence

from langchain_core.messages import ToolMessage

from .history import parse_tool_content

DEFAULT_CONFIRMATION = "Thanks! Your order has been placed."

_TELL_THE_USER = re.compile(r"^Tell the user:\s*", re.IGNORECASE)
_EDGE_QUOTES = re.compile(r'^"+|"+$')


def normalize_lead_time_prompt(prompt: str) -> str:
    """Turn the backend's instruction-style prompt into customer-facing text.

    >>> normalize_lead_time_prompt('Tell the user: "Your pizza arrives in 20 minutes"')
    'Your pizza arrives in 20 minutes'
    """
    trimmed = _TELL_THE_USER.sub("", prompt.strip()).strip()
    unquoted = _EDGE_QUOTES.sub("", trimmed)
    return unquoted or DEFAULT_CONFIRMATION


def order_id_confirmation(order_id: str) -> str:
    return f"{DEFAULT_CONFIRMATION}\nOrder ID: {order_id}"


def build_order_confirmation(tool_messages: Sequence[ToolMessage]) -> str | None:
    """Confirmation from the most recent tool result carrying a lead-time
    prompt or an order id."""
    for msg in reversed(tool_messages):
        parsed = parse_tool_content(msg.content)
        if parsed is None:
            continue
        data = parsed.get("data")
        if not isinstance(data, dict):
            continue
        prompt = data.get("lead_time_prompt")
        if isinstance(prompt, str) and prompt:
            return normalize_lead_time_prompt(prompt)
        order = data.get("order")
        if isinstance(order, dict) and order.get("order_id"):
            return order_id_confirmation(str(order["order_id"]))
    return None


def compose_reply(model_text: str | None, tool_messages: Sequence[ToolMessage]) -> str:
    """The model's narration, unless it came back empty after the action was
    already carried out through tools."""
    if model_text and model_text.strip():
        return model_text
    return build_order_confirmation(tool_messages) or ""
