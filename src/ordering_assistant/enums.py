from enum import StrEnum


class ToolName(StrEnum):
    SEARCH_MENU = "search_menu"
    SHOW_ITEMS = "show_items"
    VERIFY_OPTION_SELECTION = "verify_option_selection"
    ADD_TO_BASKET = "add_to_basket"
    REMOVE_FROM_BASKET = "remove_from_basket"
    CLEAR_BASKET = "clear_basket"
    SUBMIT_ORDER = "submit_order"


class ErrorCode(StrEnum):
    # Sentinels: read back out of tool results by the engine
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    RESTAURANT_CLOSED = "RESTAURANT_CLOSED"
    INVALID_MENU_ITEM = "INVALID_MENU_ITEM"

    # Validation
    INVALID_OPTION_SET = "INVALID_OPTION_SET"
    INVALID_OPTION = "INVALID_OPTION"
    NO_OPTIONS = "NO_OPTIONS"
    INVALID_ARGUMENTS = "INVALID_ARGUMENTS"
    UNKNOWN_TOOL = "UNKNOWN_TOOL"

    # Gateway
    ITEM_UNAVAILABLE = "ITEM_UNAVAILABLE"
    BASKET_EMPTY = "BASKET_EMPTY"
    NO_PAYMENT_METHOD = "NO_PAYMENT_METHOD"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    TOOL_FAILED = "TOOL_FAILED"


SENTINEL_CODES = frozenset(
    {
        ErrorCode.AUTHENTICATION_REQUIRED,
        ErrorCode.TOKEN_EXPIRED,
        ErrorCode.RESTAURANT_CLOSED,
        ErrorCode.INVALID_MENU_ITEM,
    }
)
