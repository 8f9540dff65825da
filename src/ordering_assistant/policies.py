"""Post-dispatch policies: display auto-injection and terminal-state classification."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from langchain_core.messages import AIMessage, ToolMessage
from loguru import logger

from .enums import SENTINEL_CODES, ErrorCode, ToolName
from .history import parse_tool_content
from .models import MenuItem
from .tools import tool_message

AUTO_SHOW_ITEMS_CALL_ID = "call_auto_show_items"


def inject_show_items(
    ai_message: AIMessage, fresh_results: Sequence[MenuItem]
) -> tuple[AIMessage, ToolMessage] | None:
    """Synthesize the show_items call the model skipped after a search.

    Searched items can only be ordered from their cards, so a search with
    results must be followed by show_items in the same round. Returns a copy of
    `ai_message` carrying the synthetic call (same message id) and its result,
    or None when the round already satisfies the rule.
    """
    names = {tc["name"] for tc in ai_message.tool_calls}
    if ToolName.SEARCH_MENU not in names or ToolName.SHOW_ITEMS in names:
        return None
    if not fresh_results:
        return None

    menu_item_ids = [item.id for item in fresh_results]
    logger.info("Auto-injecting show_items for {} items", len(menu_item_ids))
    synthetic_call = {
        "id": AUTO_SHOW_ITEMS_CALL_ID,
        "name": ToolName.SHOW_ITEMS.value,
        "args": {"menu_item_ids": menu_item_ids},
        "type": "tool_call",
    }
    updated = ai_message.model_copy(
        update={"tool_calls": [*ai_message.tool_calls, synthetic_call]}
    )
    result = tool_message(
        AUTO_SHOW_ITEMS_CALL_ID,
        ToolName.SHOW_ITEMS.value,
        {
            "status": 200,
            "display_type": "menu_cards",
            "items": [item.model_dump(mode="json") for item in fresh_results],
        },
    )
    return updated, result


@dataclass
class RoundClassification:
    sentinels: set[ErrorCode] = field(default_factory=set)
    submit_order_called: bool = False

    @property
    def auth_required(self) -> bool:
        return ErrorCode.AUTHENTICATION_REQUIRED in self.sentinels

    @property
    def token_expired(self) -> bool:
        return ErrorCode.TOKEN_EXPIRED in self.sentinels

    @property
    def terminal(self) -> bool:
        """A terminal round ends the turn without a second completion call."""
        return self.auth_required or self.token_expired or self.submit_order_called


def _sentinels_in(msg: ToolMessage) -> set[ErrorCode]:
    parsed = parse_tool_content(msg.content)
    if parsed is not None:
        code = parsed.get("error")
        if isinstance(code, str) and code in SENTINEL_CODES:
            return {ErrorCode(code)}
        return set()
    # Unparsable content: fall back to a plain substring check
    text = msg.content if isinstance(msg.content, str) else str(msg.content)
    return {code for code in SENTINEL_CODES if code in text}


def classify_round(
    tool_messages: Sequence[ToolMessage], tool_calls: Sequence[dict[str, Any]]
) -> RoundClassification:
    result = RoundClassification()
    for msg in tool_messages:
        result.sentinels |= _sentinels_in(msg)
    result.submit_order_called = any(tc.get("name") == ToolName.SUBMIT_ORDER for tc in tool_calls)
    logger.debug("Round classification: {}", result)
    return result
