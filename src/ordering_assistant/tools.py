"""Ordering tools: schemas offered to the model, argument decoding, dispatch.

Every tool result is a JSON object. Errors are results too
(`{"error": <code>, "message": <text>, ...}`) so one failed call never aborts
the other calls the model requested in the same round.
"""

import json
from dataclasses import dataclass
from typing import Annotated, Any, Literal

from langchain_core.messages import ToolMessage
from loguru import logger
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from .enums import ErrorCode, ToolName
from .gateway import DomainGateway, GatewayError
from .models import BasketLineRequest, BasketUpdate, MenuItem, OptionSelection, OrderResult
from .search_cache import SearchResultCache

# ---------------------------------------------------------------------------
# Schemas offered to the model
# ---------------------------------------------------------------------------

_OPTION_SELECTIONS_SCHEMA = {
    "type": "array",
    "description": "Selected options for the item",
    "items": {
        "type": "object",
        "properties": {
            "option_set": {
                "type": "string",
                "description": 'Exact name of the option set (e.g. "Choose your base")',
            },
            "selected_options": {
                "type": "array",
                "items": {"type": "string"},
                "description": 'Exact names of the selected options (e.g. ["Brown Rice"])',
            },
        },
        "required": ["option_set", "selected_options"],
    },
}


def _function(name: ToolName, description: str, properties: dict, required: list[str]) -> dict:
    return {
        "type": "function",
        "function": {
            "name": name.value,
            "description": description,
            "parameters": {"type": "object", "properties": properties, "required": required},
        },
    }


TOOL_SCHEMAS: list[dict[str, Any]] = [
    _function(
        ToolName.SEARCH_MENU,
        "Searches the menu for items. Use when the user asks about food items.",
        {
            "search_terms": {
                "type": "array",
                "items": {"type": "string"},
                "description": 'Search terms (e.g. ["burger", "pizza"])',
            }
        },
        ["search_terms"],
    ),
    _function(
        ToolName.SHOW_ITEMS,
        "Display interactive menu item cards. ALWAYS use this after search_menu.",
        {
            "menu_item_ids": {
                "type": "array",
                "items": {"type": "integer"},
                "description": "Menu item ids from the search_menu result",
            }
        },
        ["menu_item_ids"],
    ),
    _function(
        ToolName.VERIFY_OPTION_SELECTION,
        "Checks that an option choice is valid for an option set of a searched item.",
        {
            "menu_item_id": {"type": "integer"},
            "option_set": {"type": "string", "description": "Name of the option set"},
            "selected_option": {"type": "string", "description": "Name of the chosen option"},
        },
        ["menu_item_id", "option_set", "selected_option"],
    ),
    _function(
        ToolName.ADD_TO_BASKET,
        "Adds a menu item to the basket. Use the exact menu_item_id from search_menu.",
        {
            "menu_item_id": {"type": "integer", "description": "Menu item id from search_menu"},
            "quantity": {"type": "integer", "description": "Quantity to add (default 1)"},
            "option_selections": _OPTION_SELECTIONS_SCHEMA,
        },
        ["menu_item_id"],
    ),
    _function(
        ToolName.REMOVE_FROM_BASKET,
        "Removes a menu item from the basket.",
        {
            "menu_item_id": {"type": "integer", "description": "Menu item id to remove"},
            "quantity": {"type": "integer", "description": "Quantity to remove (default 1)"},
            "option_selections": _OPTION_SELECTIONS_SCHEMA,
        },
        ["menu_item_id"],
    ),
    _function(ToolName.CLEAR_BASKET, "Clears all items from the basket.", {}, []),
    _function(
        ToolName.SUBMIT_ORDER, "Submits the order for payment. Requires sign-in.", {}, []
    ),
]


# ---------------------------------------------------------------------------
# Argument decoding
# ---------------------------------------------------------------------------


class SearchMenuArgs(BaseModel):
    tool: Literal["search_menu"]
    search_terms: list[str]

    @field_validator("search_terms")
    @classmethod
    def _non_blank(cls, terms: list[str]) -> list[str]:
        cleaned = [t.strip() for t in terms if t and t.strip()]
        if not cleaned:
            raise ValueError("at least one search term is required")
        return cleaned


class ShowItemsArgs(BaseModel):
    tool: Literal["show_items"]
    menu_item_ids: list[int] = Field(default_factory=list)


class VerifyOptionSelectionArgs(BaseModel):
    tool: Literal["verify_option_selection"]
    menu_item_id: int
    option_set: str
    selected_option: str


class AddToBasketArgs(BaseModel):
    tool: Literal["add_to_basket"]
    menu_item_id: int
    quantity: int = Field(default=1, ge=1)
    option_selections: list[OptionSelection] = Field(default_factory=list)


class RemoveFromBasketArgs(BaseModel):
    tool: Literal["remove_from_basket"]
    menu_item_id: int
    quantity: int = Field(default=1, ge=1)
    option_selections: list[OptionSelection] = Field(default_factory=list)


class ClearBasketArgs(BaseModel):
    tool: Literal["clear_basket"]


class SubmitOrderArgs(BaseModel):
    tool: Literal["submit_order"]


ToolArguments = Annotated[
    SearchMenuArgs
    | ShowItemsArgs
    | VerifyOptionSelectionArgs
    | AddToBasketArgs
    | RemoveFromBasketArgs
    | ClearBasketArgs
    | SubmitOrderArgs,
    Field(discriminator="tool"),
]

_ARGUMENTS_ADAPTER: TypeAdapter = TypeAdapter(ToolArguments)
_TOOL_NAMES = frozenset(t.value for t in ToolName)


@dataclass
class ArgumentError:
    """A tool call that could not be decoded; `payload` is the tool result."""

    payload: dict[str, Any]


def decode_tool_call(name: str, args: Any) -> BaseModel | ArgumentError:
    """Validate a model-requested call. Never raises."""
    if name not in _TOOL_NAMES:
        return ArgumentError({"error": ErrorCode.UNKNOWN_TOOL, "message": f"Unknown tool: {name}"})
    if not isinstance(args, dict):
        args = {}
    try:
        return _ARGUMENTS_ADAPTER.validate_python({**args, "tool": name})
    except ValidationError as exc:
        details = [
            f"{'.'.join(str(part) for part in err['loc'][1:]) or 'arguments'}: {err['msg']}"
            for err in exc.errors()
        ]
        return ArgumentError(
            {
                "error": ErrorCode.INVALID_ARGUMENTS,
                "message": f"Invalid arguments for {name}: " + "; ".join(details),
            }
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def tool_message(tool_call_id: str, name: str, payload: dict[str, Any]) -> ToolMessage:
    return ToolMessage(
        content=json.dumps(payload, default=str),
        tool_call_id=tool_call_id,
        name=name,
    )


def tool_error_payload(exc: Exception) -> dict[str, Any]:
    """Convert a failure inside a tool into a result the model can read."""
    if isinstance(exc, GatewayError):
        if exc.code == ErrorCode.TOKEN_EXPIRED:
            return {
                "error": ErrorCode.TOKEN_EXPIRED,
                "message": "Your session has expired. Please sign in again.",
            }
        if exc.code == ErrorCode.RESTAURANT_CLOSED or "closed" in str(exc).lower():
            return {
                "error": ErrorCode.RESTAURANT_CLOSED,
                "message": "The restaurant is currently closed.",
            }
        logger.warning("Gateway error ({}): {}", exc.code, exc)
        return {"error": exc.code or ErrorCode.GATEWAY_ERROR, "message": exc.display_message}
    logger.exception("Tool execution failed")
    return {"error": ErrorCode.TOOL_FAILED, "message": str(exc)}


def _dump(items: list[MenuItem]) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]


def _basket_cleared() -> dict[str, Any]:
    return {"status": 200, "message": "Basket cleared"}


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class ToolDispatcher:
    """Executes one round of tool calls against the gateway and the round's
    search result cache.

    Calls must be executed in the order the model requested them: later calls
    read basket and cache state left by earlier ones.
    """

    def __init__(
        self,
        gateway: DomainGateway,
        session_id: str,
        token: str | None,
        cache: SearchResultCache,
    ) -> None:
        self.gateway = gateway
        self.session_id = session_id
        self.token = token
        self.cache = cache
        self.fresh_results: list[MenuItem] = []
        self.order_result: OrderResult | None = None
        self._handlers = {
            ToolName.SEARCH_MENU: self._search_menu,
            ToolName.SHOW_ITEMS: self._show_items,
            ToolName.VERIFY_OPTION_SELECTION: self._verify_option_selection,
            ToolName.ADD_TO_BASKET: self._add_to_basket,
            ToolName.REMOVE_FROM_BASKET: self._remove_from_basket,
            ToolName.CLEAR_BASKET: self._clear_basket,
            ToolName.SUBMIT_ORDER: self._submit_order,
        }

    def execute(self, tool_call: dict[str, Any]) -> dict[str, Any]:
        name = tool_call.get("name") or ""
        args = tool_call.get("args") or {}
        logger.info("-> {}({})", name, json.dumps(args, default=str))

        decoded = decode_tool_call(name, args)
        if isinstance(decoded, ArgumentError):
            logger.warning("Rejected {} call: {}", name, decoded.payload["message"])
            return decoded.payload
        try:
            return self._handlers[ToolName(name)](decoded)
        except Exception as exc:
            return tool_error_payload(exc)

    def execute_invalid(self, invalid_call: dict[str, Any]) -> dict[str, Any]:
        """Result for a call whose arguments were not valid JSON."""
        name = invalid_call.get("name") or "unknown"
        logger.warning("Unparsable arguments for {}: {}", name, invalid_call.get("error"))
        return {
            "error": ErrorCode.INVALID_ARGUMENTS,
            "message": f"Could not parse the arguments for {name}. Send valid JSON.",
        }

    def _invalid_item(self, item_id: int) -> dict[str, Any]:
        valid_ids = self.cache.ids
        hint = (
            f"Valid IDs: {', '.join(str(i) for i in valid_ids)}"
            if valid_ids
            else "Please search again."
        )
        return {
            "error": ErrorCode.INVALID_MENU_ITEM,
            "message": f"Item {item_id} not found in search results. {hint}",
            "valid_ids": valid_ids,
        }

    # -- handlers ---------------------------------------------------------

    def _search_menu(self, args: SearchMenuArgs) -> dict[str, Any]:
        merged: dict[int, MenuItem] = {}
        for term in args.search_terms:
            for item in self.gateway.search_menu(self.session_id, term, self.token):
                merged.setdefault(item.id, item)
        items = list(merged.values())
        self.cache.replace(items)
        self.fresh_results = items
        logger.info("search_menu found {} items", len(items))
        return {"status": 200, "data": {"items": _dump(items)}}

    def _show_items(self, args: ShowItemsArgs) -> dict[str, Any]:
        items = self.cache.filter(args.menu_item_ids)
        return {"status": 200, "display_type": "menu_cards", "items": _dump(items)}

    def _verify_option_selection(self, args: VerifyOptionSelectionArgs) -> dict[str, Any]:
        item = self.cache.get(args.menu_item_id)
        if item is None:
            return self._invalid_item(args.menu_item_id)
        if item.option_sets.is_empty:
            return {"error": ErrorCode.NO_OPTIONS, "message": f"Item {item.name} has no options."}

        option_set = item.option_sets.find_set(args.option_set)
        if option_set is None:
            available_sets = item.option_sets.set_names()
            return {
                "error": ErrorCode.INVALID_OPTION_SET,
                "message": (
                    f'Option set "{args.option_set}" not found. '
                    f"Available sets: {', '.join(available_sets)}"
                ),
                "available_option_sets": available_sets,
            }

        option = option_set.find_option(args.selected_option)
        if option is None or not option.is_available:
            available = [o.name for o in option_set.options if o.is_available]
            return {
                "error": ErrorCode.INVALID_OPTION,
                "message": (
                    f'Option "{args.selected_option}" not found in set "{option_set.name}". '
                    f"Available options: {', '.join(available) or 'none'}"
                ),
                "available_options": available,
            }

        return {
            "status": 200,
            "valid": True,
            "verified_selection": {
                "option_set": option_set.name,
                "selected_option": option.name,
            },
        }

    def _add_to_basket(self, args: AddToBasketArgs) -> dict[str, Any]:
        if len(self.cache) and args.menu_item_id not in self.cache:
            return self._invalid_item(args.menu_item_id)
        basket = self.gateway.update_basket(
            self.session_id,
            BasketUpdate(
                add=[
                    BasketLineRequest(
                        menu_item_id=args.menu_item_id,
                        quantity=args.quantity,
                        option_selections=args.option_selections,
                    )
                ]
            ),
            self.token,
        )
        return {"status": 200, "data": {"basket": basket.model_dump(mode="json")}}

    def _remove_from_basket(self, args: RemoveFromBasketArgs) -> dict[str, Any]:
        basket = self.gateway.get_basket(self.session_id, self.token)
        line = basket.find_line(args.menu_item_id)
        # A partial remove that leaves a zero-quantity line trips the backend
        if line is not None and line.quantity <= args.quantity and len(basket.items) == 1:
            self.gateway.clear_basket(self.session_id, self.token)
            return _basket_cleared()

        basket = self.gateway.update_basket(
            self.session_id,
            BasketUpdate(
                remove=[
                    BasketLineRequest(
                        menu_item_id=args.menu_item_id,
                        quantity=args.quantity,
                        option_selections=args.option_selections,
                    )
                ]
            ),
            self.token,
        )
        return {"status": 200, "data": {"basket": basket.model_dump(mode="json")}}

    def _clear_basket(self, args: ClearBasketArgs) -> dict[str, Any]:
        self.gateway.clear_basket(self.session_id, self.token)
        return _basket_cleared()

    def _submit_order(self, args: SubmitOrderArgs) -> dict[str, Any]:
        if not self.token:
            return {
                "error": ErrorCode.AUTHENTICATION_REQUIRED,
                "message": "Please sign in to place your order.",
            }
        result = self.gateway.submit_order(self.session_id, self.token)
        if not result.success:
            raise GatewayError(
                result.error or "Order failed",
                code=result.error_code,
                user_message=result.error,
            )
        self.order_result = result
        return {
            "status": 200,
            "data": {
                "order": {"order_id": result.order_id},
                "lead_time_prompt": result.lead_time_prompt,
            },
        }
