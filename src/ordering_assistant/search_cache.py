"""Search result cache: the menu items the model may currently reference by id."""

from collections.abc import Iterable, Sequence

from langchain_core.messages import BaseMessage, ToolMessage
from loguru import logger
from pydantic import ValidationError

from .enums import ToolName
from .history import parse_tool_content
from .models import MenuItem


def extract_search_results(messages: Sequence[BaseMessage]) -> list[MenuItem]:
    """Scan backward for the most recent search_menu result.

    A search result is a tool message whose JSON carries `data.items` as a
    list. Unparsable content counts as no match.
    """
    for msg in reversed(messages):
        if not isinstance(msg, ToolMessage):
            continue
        if msg.name and msg.name != ToolName.SEARCH_MENU:
            continue
        parsed = parse_tool_content(msg.content)
        if parsed is None:
            continue
        data = parsed.get("data")
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            continue
        items: list[MenuItem] = []
        for raw in data["items"]:
            try:
                items.append(MenuItem.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping malformed menu item in history: {!r}", raw)
        return items
    return []


class SearchResultCache:
    """Ordered menu items from the latest search, with lookup by id."""

    def __init__(self, items: Iterable[MenuItem] = ()) -> None:
        self._items: list[MenuItem] = list(items)

    @classmethod
    def from_history(cls, messages: Sequence[BaseMessage]) -> "SearchResultCache":
        return cls(extract_search_results(messages))

    @property
    def items(self) -> list[MenuItem]:
        return list(self._items)

    @property
    def ids(self) -> list[int]:
        return [item.id for item in self._items]

    def replace(self, items: Iterable[MenuItem]) -> None:
        self._items = list(items)

    def get(self, item_id: int) -> MenuItem | None:
        return next((item for item in self._items if item.id == item_id), None)

    def filter(self, item_ids: Iterable[int]) -> list[MenuItem]:
        """Items whose id was requested, in cache order. Unknown ids are dropped."""
        wanted = set(item_ids)
        return [item for item in self._items if item.id in wanted]

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return any(item.id == item_id for item in self._items)
