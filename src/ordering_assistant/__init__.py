"""Conversational ordering assistant: LLM tool orchestration over a menu and basket."""

from .completion import CompletionInvoker, create_chat_model
from .engine import OrderingEngine, TurnState
from .enums import ErrorCode, ToolName
from .gateway import DomainGateway, GatewayError
from .local_gateway import InMemoryGateway
from .models import BasketSummary, Menu, MenuItem, OrderResult, TurnResult

__all__ = [
    "BasketSummary",
    "CompletionInvoker",
    "DomainGateway",
    "ErrorCode",
    "GatewayError",
    "InMemoryGateway",
    "Menu",
    "MenuItem",
    "OrderResult",
    "OrderingEngine",
    "ToolName",
    "TurnResult",
    "TurnState",
    "create_chat_model",
]
